"""Tasks that may be queued on Celery."""

from celery import shared_task
from celery.utils.log import get_task_logger

from ..feeds.models import Feed
from .models import Subscription
from .notifying import notify_hubs

logger = get_task_logger(__name__)


@shared_task(name="chirrup.hubs.notify_feed_hubs")
def notify_feed_hubs(pk):
    """Ping the hubs of the feed with this ID, returning how many acknowledged."""
    try:
        feed = Feed.objects.get(pk=pk)
    except Feed.DoesNotExist:
        logger.warning(f"{pk}: feed does not exist")
        return 0
    return notify_hubs(feed)


@shared_task(name="chirrup.hubs.request_hub_subscription")
def request_hub_subscription(pk):
    try:
        subscription = Subscription.objects.select_related("callback", "follower").get(pk=pk)
    except Subscription.DoesNotExist:
        logger.warning(f"{pk}: subscription does not exist")
        return
    if subscription.request():
        logger.info(f"requested {subscription} from {subscription.hub}")
