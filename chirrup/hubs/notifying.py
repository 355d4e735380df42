"""Telling hubs that our feeds have changed."""

from concurrent.futures import ThreadPoolExecutor, wait
import logging

import requests
from django.conf import settings

from .protocol import MODE, PUBLISH, URL

logger = logging.getLogger(__name__)


class HubUnreachable(Exception):
    """A hub could not be told of a change (timeout, connection failure, or error status)."""


def ping_hub(hub_url, topic_url, timeout):
    """Tell one hub that the feed at topic_url has new content.

    Raises HubUnreachable on failure. No retries.
    Only the status is read; the body of the response is not waited for.
    """
    try:
        r = requests.post(
            hub_url,
            data={MODE: PUBLISH, URL: topic_url},
            headers={"User-Agent": settings.FEEDS_FETCH_AGENT},
            timeout=timeout,
            allow_redirects=False,
            stream=True,
        )
    except requests.RequestException as e:
        raise HubUnreachable(f"{hub_url}: {e}") from e
    r.close()
    if not 200 <= r.status_code < 300:
        raise HubUnreachable(f"{hub_url}: status {r.status_code}")
    return r.status_code


def notify_hubs(feed, timeout=None):
    """Ping each of the feed’s hubs, and return how many acknowledged.

    Hubs are pinged at the same time, and the call returns after at most
    `timeout` seconds (default `HUBS_TIMEOUT`). A hub that fails or has
    not answered by then is logged and not counted.
    """
    if timeout is None:
        timeout = settings.HUBS_TIMEOUT
    hub_urls = list(feed.hubs.values_list("url", flat=True))
    if not hub_urls:
        return 0

    executor = ThreadPoolExecutor(max_workers=len(hub_urls), thread_name_prefix="ping")
    futures = {executor.submit(ping_hub, url, feed.url, timeout): url for url in hub_urls}
    done, not_done = wait(futures, timeout=timeout)
    # Stragglers are abandoned rather than waited for.
    executor.shutdown(wait=False, cancel_futures=True)

    count = 0
    for future in done:
        try:
            future.result()
            count += 1
        except HubUnreachable as e:
            logger.warning(f"{feed}: could not notify hub: {e}")
    for future in not_done:
        logger.warning(f"{feed}: could not notify hub: {futures[future]}: no answer in {timeout}s")
    logger.info(f"{feed}: notified {count} of {len(hub_urls)} hubs")
    return count
