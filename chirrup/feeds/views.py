"""Views for feeds.

The essential one is the Atom feed itself, since that is the URL hubs
use both to verify subscriptions and to push new entries to us.
"""

import logging

from django.contrib import messages
from django.contrib.auth.mixins import LoginRequiredMixin
from django.core.exceptions import PermissionDenied
from django.http import (
    Http404,
    HttpResponse,
    HttpResponseBadRequest,
    HttpResponseForbidden,
    JsonResponse,
)
from django.shortcuts import get_object_or_404, redirect
from django.utils.decorators import method_decorator
from django.utils.functional import cached_property
from django.utils.http import url_has_allowed_host_and_scheme
from django.utils.translation import gettext as _
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.views.generic.list import BaseListView

from ..hubs.models import Subscription
from ..hubs.receiving import InvalidSignature, UnknownFeed, ingest
from .atom import ATOM_MEDIA_TYPE, MalformedDocument, atom_datetime, render
from .forms import UpdateForm
from .models import Feed, Person, Update

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class FeedView(View):
    """The Atom feed.

    A GET with a `hub.challenge` parameter is a hub verifying a subscription;
    any other GET fetches the feed. A POST is a hub pushing new entries.
    """

    def get(self, request, pk):
        if "hub.challenge" in request.GET:
            feed = Feed.objects.filter(pk=pk).first()
            result = Subscription.objects.answer_challenge(
                feed, request.build_absolute_uri(), request.GET
            )
            return HttpResponse(
                result.body, status=result.status, content_type="text/plain; charset=utf-8"
            )

        feed = get_object_or_404(Feed, pk=pk)
        # TODO: Honour If-Modified-Since and send Cache-Control once there is a policy for it.
        return HttpResponse(
            render(feed, request.build_absolute_uri("/")),
            content_type=f"{ATOM_MEDIA_TYPE}; charset=UTF-8",
        )

    def post(self, request, pk):
        try:
            result = ingest(
                pk,
                request.body,
                request.build_absolute_uri(),
                request.headers.get("X-Hub-Signature"),
            )
        except UnknownFeed:
            raise Http404("No such feed")
        except InvalidSignature:
            return HttpResponseForbidden("Signature missing or incorrect\n", content_type="text/plain")
        except MalformedDocument as e:
            return HttpResponseBadRequest(f"Malformed document: {e}\n", content_type="text/plain")
        return HttpResponse(
            f"accepted {result.accepted}, rejected {result.rejected}\n",
            content_type="text/plain",
        )


def user_feed(request, slug):
    """Redirect to the feed of the person with this slug."""
    person = get_object_or_404(Person, slug=slug)
    feed = person.feed
    if not feed:
        raise Http404("No feed")
    return redirect(feed.get_absolute_url())


def redirect_back(request, default):
    """Redirect to the `next` parameter if it is safe, otherwise to default."""
    next_url = request.POST.get("next")
    if next_url and url_has_allowed_host_and_scheme(
        next_url, allowed_hosts={request.get_host()}, require_https=request.is_secure()
    ):
        return redirect(next_url)
    return redirect(default)


class UpdateCreateView(LoginRequiredMixin, View):
    """Post a new update to the feed of the logged-in person."""

    def post(self, request):
        person = get_object_or_404(Person, login=request.user)
        feed = person.feed
        if not feed:
            raise Http404("No feed")
        form = UpdateForm(request.POST)
        if form.is_valid():
            feed.publish(person, form.cleaned_data["text"])
            messages.success(request, _("Update created."))
        else:
            messages.error(request, _("Update not created: %(errors)s") % {"errors": form.errors.as_text()})
        return redirect_back(request, feed.get_absolute_url())


class UpdateDeleteView(LoginRequiredMixin, View):
    """Delete one of the logged-in person’s updates."""

    def post(self, request, pk):
        update = get_object_or_404(Update.objects.select_related("author", "feed"), pk=pk)
        if update.author.login_id != request.user.pk:
            raise PermissionDenied("Not your update")
        feed = update.feed
        feed.remove_update(update)
        messages.success(request, _("Update deleted."))
        return redirect_back(request, feed.get_absolute_url())



class JsonListView(BaseListView):
    """One page of a list of things as a JSON object.

    The object has `page`, `pages`, and `items`, where each item is what
    `get_item` makes of one object in the list.
    """

    paginate_by = 30

    def get(self, request, *args, **kwargs):
        self.object_list = self.get_queryset()
        paginator, page, object_list, is_paginated = self.paginate_queryset(
            self.object_list, self.get_paginate_by(self.object_list)
        )
        return JsonResponse({
            **self.get_extra_fields(),
            "page": page.number,
            "pages": paginator.num_pages,
            "items": [self.get_item(obj) for obj in object_list],
        })

    def get_extra_fields(self):
        return {}


class HashtagView(JsonListView):
    """Updates tagged with a hashtag, newest first."""

    def get_queryset(self):
        return (
            Update.objects.hashtag_search(self.kwargs["tag"])
            .select_related("author", "feed")
            .order_by("-published", "-created")
        )

    def get_extra_fields(self):
        return {"hashtag": self.kwargs["tag"].removeprefix("#")}

    def get_item(self, update):
        return {
            "id": update.get_entry_id(),
            "feed": update.feed.url,
            "author": update.author.native_name,
            "text": update.text,
            "published": atom_datetime(update.published),
        }


class PersonListMixin:
    """Lists persons related to the person whose slug is in the URL."""

    @cached_property
    def person(self):
        return get_object_or_404(Person, slug=self.kwargs["slug"])

    def get_extra_fields(self):
        return {"person": self.person.slug}

    def get_item(self, person):
        return {"name": person.native_name, "slug": person.slug, "url": person.url}


class FollowersView(PersonListMixin, JsonListView):
    def get_queryset(self):
        return self.person.followers()


class FollowingView(PersonListMixin, JsonListView):
    def get_queryset(self):
        return self.person.followed()
