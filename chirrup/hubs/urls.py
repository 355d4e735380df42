from django.urls import path

from . import views

app_name = "hubs"
urlpatterns = [
    path("subscribe", views.SubscribeView.as_view(), name="subscribe"),
    path("unsubscribe", views.UnsubscribeView.as_view(), name="unsubscribe"),
    path("users/<slug:slug>/follow", views.FollowView.as_view(), name="follow"),
    path("users/<slug:slug>/unfollow", views.UnfollowView.as_view(), name="unfollow"),
]
