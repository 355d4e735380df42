import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Person",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("native_name", models.CharField(help_text="How this person’s name is presented.", max_length=250, verbose_name="native name")),
                ("slug", models.SlugField(blank=True, help_text="Used in URLs for this person’s pages. Only local accounts have one.", max_length=64, null=True, unique=True, verbose_name="slug")),
                ("url", models.URLField(blank=True, help_text="Profile page of a remote author, as given in their feed.", max_length=4000, verbose_name="URL")),
                ("created", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created")),
                ("login", models.ForeignKey(blank=True, help_text="If supplied, this person has an account on this system.", null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL, verbose_name="login")),
            ],
            options={
                "verbose_name": "person",
                "verbose_name_plural": "persons",
            },
        ),
        migrations.CreateModel(
            name="Hub",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("url", models.URLField(max_length=4000, unique=True, verbose_name="URL")),
                ("created", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created")),
            ],
            options={
                "verbose_name": "hub",
                "verbose_name_plural": "hubs",
            },
        ),
        migrations.CreateModel(
            name="Feed",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("url", models.URLField(help_text="Canonical URL of the feed. Never changes once created.", max_length=4000, unique=True, verbose_name="URL")),
                ("title", models.CharField(blank=True, max_length=4000, verbose_name="title")),
                ("secret", models.CharField(blank=True, help_text="Shared with the hub to sign content pushed to us for this feed.", max_length=200, verbose_name="secret")),
                ("created", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created")),
                ("author", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="feeds", related_query_name="feed", to="feeds.person", verbose_name="author")),
                ("hubs", models.ManyToManyField(blank=True, help_text="Hubs that are told when this feed changes.", related_name="feeds", related_query_name="feed", to="feeds.hub", verbose_name="hubs")),
            ],
            options={
                "verbose_name": "feed",
                "verbose_name_plural": "feeds",
            },
        ),
        migrations.AddField(
            model_name="person",
            name="following",
            field=models.ManyToManyField(blank=True, help_text="Feeds whose updates appear in this person’s timeline.", related_name="followers", related_query_name="follower", to="feeds.feed", verbose_name="following"),
        ),
        migrations.CreateModel(
            name="Update",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("text", models.TextField(blank=True, verbose_name="text")),
                ("entry_id", models.CharField(blank=True, help_text="ID of the Atom entry this came from. Blank for local updates.", max_length=1000, verbose_name="entry ID")),
                ("published", models.DateTimeField(default=django.utils.timezone.now, verbose_name="published")),
                ("created", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created")),
                ("author", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="updates", related_query_name="update", to="feeds.person", verbose_name="author")),
                ("feed", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="updates", related_query_name="update", to="feeds.feed", verbose_name="feed")),
            ],
            options={
                "verbose_name": "update",
                "verbose_name_plural": "updates",
                "ordering": ["-published", "-created"],
            },
        ),
        migrations.AddConstraint(
            model_name="update",
            constraint=models.UniqueConstraint(condition=models.Q(("entry_id", ""), _negated=True), fields=("feed", "entry_id"), name="unique_entry_id_per_feed"),
        ),
    ]
