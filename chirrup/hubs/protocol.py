"""PubSubHubbub protocol.

Implementation of the subset of PubSubHubbub (as used by OStatus) we need:
pinging hubs when our feeds change, asking hubs to subscribe us to remote
feeds, answering their verification challenges, and checking the
signatures on content they push to us.
"""

from dataclasses import dataclass
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

MODE = "hub.mode"
TOPIC = "hub.topic"
URL = "hub.url"  # Topic of a publish ping.
CALLBACK = "hub.callback"
CHALLENGE = "hub.challenge"
VERIFY = "hub.verify"
VERIFY_TOKEN = "hub.verify_token"
SECRET = "hub.secret"
LEASE_SECONDS = "hub.lease_seconds"

PUBLISH = "publish"
SUBSCRIBE = "subscribe"

SIGNATURE_HEADER = "X-Hub-Signature"

# Version 0.3 of the protocol only has sha1; 0.4 adds the others.
SIGNATURE_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha384": hashlib.sha384,
    "sha512": hashlib.sha512,
}

NOT_FOUND = 404


@dataclass(frozen=True)
class ChallengeResponse:
    """How to answer a verification request."""

    status: int
    body: str = ""

    @property
    def verified(self):
        return self.status == 200


def tokens_match(given, expected):
    """Compare secret tokens in constant time."""
    return hmac.compare_digest((given or "").encode("UTF-8"), expected.encode("UTF-8"))


def handle_challenge(
    request_url, topic, challenge, verify_token, expected_feed_url, expected_verify_token
):
    """Decide how to answer a hub’s request to verify a subscription.

    Arguments --
        request_url -- the URL the hub requested (our callback)
        topic -- the `hub.topic` parameter
        challenge -- the `hub.challenge` parameter
        verify_token -- the `hub.verify_token` parameter
        expected_feed_url -- URL of the feed at this callback, or None if there is no such feed
        expected_verify_token -- the token we chose when subscribing, or None if we know of none

    Returns a ChallengeResponse. When both the topic and the token match,
    its status is 200 and its body is the challenge exactly as given,
    which proves to the hub that we asked for the subscription.
    Otherwise the status is 404, which the protocol uses for refusal.
    """
    verified = bool(expected_feed_url) and topic == expected_feed_url
    if verified and expected_verify_token and tokens_match(verify_token, expected_verify_token):
        return ChallengeResponse(200, challenge)
    logger.info(f"{request_url}: refusing verification of topic {topic!r}")
    return ChallengeResponse(NOT_FOUND)


def sign(secret, body, algorithm="sha1"):
    """Return the value of the signature header a hub would send with this body."""
    digest = hmac.new(secret.encode("UTF-8"), body, SIGNATURE_ALGORITHMS[algorithm]).hexdigest()
    return f"{algorithm}={digest}"


def signature_matches(secret, body, header):
    """Check the signature header a hub sent with this body.

    Arguments --
        secret -- the secret we gave the hub when subscribing (may be empty)
        body -- bytes of the request body, exactly as received
        header -- value of the X-Hub-Signature header, or None

    False if there is no secret, no header, an unknown algorithm, or a mismatch.
    """
    if not secret or not header:
        return False
    algorithm, sep, digest = header.strip().partition("=")
    digestmod = SIGNATURE_ALGORITHMS.get(algorithm.lower())
    if not sep or not digestmod:
        return False
    expected = hmac.new(secret.encode("UTF-8"), body, digestmod).hexdigest()
    return hmac.compare_digest(expected.encode("ASCII"), digest.strip().lower().encode("UTF-8"))
