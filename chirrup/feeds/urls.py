from django.urls import path

from . import views

app_name = "feeds"
urlpatterns = [
    path("feeds/<int:pk>.atom", views.FeedView.as_view(), name="feed"),
    path("users/<slug:slug>/feed", views.user_feed, name="user-feed"),
    path("users/<slug:slug>/followers", views.FollowersView.as_view(), name="followers"),
    path("users/<slug:slug>/following", views.FollowingView.as_view(), name="following"),
    path("hashtags/<str:tag>", views.HashtagView.as_view(), name="hashtag"),
    path("updates", views.UpdateCreateView.as_view(), name="update-create"),
    path("updates/<int:pk>/delete", views.UpdateDeleteView.as_view(), name="update-delete"),
]
