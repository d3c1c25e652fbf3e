from novel2epub.models.novel import Novel
from novel2epub.models.job import EpubJob, JobStatus
from novel2epub.models.delivery import DeliveryStatus, KindleDelivery

__all__ = ["Novel", "EpubJob", "JobStatus", "KindleDelivery", "DeliveryStatus"]
