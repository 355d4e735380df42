"""Views for following and unfollowing feeds.

All take POST requests from logged-in persons and redirect back,
reporting the outcome with a message.
"""

from django.contrib import messages
from django.contrib.auth.mixins import LoginRequiredMixin
from django.shortcuts import get_object_or_404
from django.utils.functional import cached_property
from django.utils.translation import gettext as _
from django.views import View

from ..feeds.models import Feed, Person
from ..feeds.views import redirect_back
from .forms import FollowForm
from .models import Subscription


class FollowerMixin(LoginRequiredMixin):
    """Mixin for views acting on behalf of the logged-in person."""

    @cached_property
    def person(self):
        return get_object_or_404(Person, login=self.request.user)

    def get_default_url(self):
        feed = self.person.feed
        return feed.get_absolute_url() if feed else "/"


class SubscribeView(FollowerMixin, View):
    """Follow a feed given its URL."""

    def post(self, request):
        form = FollowForm(request.POST)
        if not form.is_valid():
            messages.error(request, _("That does not look like the URL of a feed."))
            return redirect_back(request, self.get_default_url())
        url = form.cleaned_data["url"]
        feed = Subscription.objects.follow(self.person, url)
        if not feed:
            messages.error(request, _("There was a problem following %(url)s.") % {"url": url})
            return redirect_back(request, self.get_default_url())
        messages.success(request, _("Now following %(name)s.") % {"name": feed.author})
        return redirect_back(request, feed.get_absolute_url())


class UnsubscribeView(FollowerMixin, View):
    """Stop following a feed given its URL."""

    def post(self, request):
        form = FollowForm(request.POST)
        feed = form.is_valid() and Feed.objects.filter(url=form.cleaned_data["url"]).first()
        if not feed or not self.person.is_following(feed.url):
            messages.info(request, _("You are not following that feed."))
        else:
            Subscription.objects.unfollow(self.person, feed)
            messages.success(request, _("No longer following %(name)s.") % {"name": feed.author})
        return redirect_back(request, self.get_default_url())


class FollowView(FollowerMixin, View):
    """Follow another person on this site."""

    def post(self, request, slug):
        other = get_object_or_404(Person, slug=slug)
        feed = other.feed
        if other == self.person or not feed:
            return redirect_back(request, self.get_default_url())
        if self.person.is_following(feed.url):
            messages.info(request, _("You’re already following %(name)s.") % {"name": other})
        elif Subscription.objects.follow(self.person, feed.url):
            messages.success(request, _("Now following %(name)s.") % {"name": other})
        else:
            messages.error(request, _("There was a problem following %(name)s.") % {"name": other})
        return redirect_back(request, feed.get_absolute_url())


class UnfollowView(FollowerMixin, View):
    """Stop following another person on this site."""

    def post(self, request, slug):
        other = get_object_or_404(Person, slug=slug)
        feed = other.feed
        if other == self.person or not feed:
            return redirect_back(request, self.get_default_url())
        if not self.person.is_following(feed.url):
            messages.info(request, _("You’re not following %(name)s.") % {"name": other})
        else:
            Subscription.objects.unfollow(self.person, feed)
            messages.success(request, _("No longer following %(name)s.") % {"name": other})
        return redirect_back(request, feed.get_absolute_url())
