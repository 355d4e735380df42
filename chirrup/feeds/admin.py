from django.contrib import admin

from .models import Feed, Hub, Person, Update


def ping_hubs(model_admin, request, queryset):
    """Tell hubs the selected feeds have changed."""
    for feed in queryset:
        feed.ping_hubs()


ping_hubs.short_description = "Ping hubs"


class PersonAdmin(admin.ModelAdmin):
    list_display = ["native_name", "slug", "login", "url", "created"]
    search_fields = ["native_name", "slug", "url"]
    raw_id_fields = ["login"]
    filter_horizontal = ["following"]


class HubAdmin(admin.ModelAdmin):
    list_display = ["url", "created"]
    search_fields = ["url"]
    readonly_fields = ["created"]


class FeedAdmin(admin.ModelAdmin):
    list_display = ["url", "author", "title", "created"]
    search_fields = ["url", "title", "author__native_name"]
    raw_id_fields = ["author"]
    filter_horizontal = ["hubs"]
    readonly_fields = ["url", "created"]
    actions = [ping_hubs]


class UpdateAdmin(admin.ModelAdmin):
    list_display = ["__str__", "feed", "author", "published"]
    search_fields = ["text", "entry_id", "author__native_name"]
    raw_id_fields = ["feed", "author"]
    date_hierarchy = "published"


admin.site.register(Person, PersonAdmin)
admin.site.register(Hub, HubAdmin)
admin.site.register(Feed, FeedAdmin)
admin.site.register(Update, UpdateAdmin)
