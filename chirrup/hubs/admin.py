from django.contrib import admin

from .models import Subscription, make_token


def queue_request(model_admin, request, queryset):
    """Ask hubs again for the selected subscriptions, with fresh tokens."""
    for subscription in queryset.select_related("callback"):
        subscription.verify_token = make_token()
        subscription.state = Subscription.PENDING
        subscription.save(update_fields=["verify_token", "state"])
        subscription.queue_request()


queue_request.short_description = "Request again"


class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ["topic", "follower", "hub", "state", "verified", "lease_expires"]
    list_filter = ["state"]
    search_fields = ["topic", "hub", "follower__native_name"]
    raw_id_fields = ["follower", "callback"]
    readonly_fields = ["verify_token", "created"]
    date_hierarchy = "created"
    actions = [queue_request]


admin.site.register(Subscription, SubscriptionAdmin)
