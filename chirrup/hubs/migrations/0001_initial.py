import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("feeds", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("topic", models.URLField(help_text="URL of the remote feed.", max_length=4000, verbose_name="topic")),
                ("hub", models.URLField(help_text="Hub the subscription was requested from.", max_length=4000, verbose_name="hub")),
                ("verify_token", models.CharField(help_text="Chosen when subscribing; the hub must send it back when verifying.", max_length=255, verbose_name="verify token")),
                ("state", models.CharField(choices=[("pending", "Pending"), ("verified", "Verified"), ("failed", "Failed")], default="pending", max_length=20, verbose_name="state")),
                ("requested", models.DateTimeField(blank=True, help_text="When the hub accepted the subscription request.", null=True, verbose_name="requested")),
                ("verified", models.DateTimeField(blank=True, help_text="When the hub last verified the subscription.", null=True, verbose_name="verified")),
                ("lease_expires", models.DateTimeField(blank=True, null=True, verbose_name="lease expires")),
                ("created", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created")),
                ("callback", models.ForeignKey(help_text="Our copy of the feed, whose URL the hub calls.", on_delete=django.db.models.deletion.CASCADE, related_name="subscriptions", related_query_name="subscription", to="feeds.feed", verbose_name="callback")),
                ("follower", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="subscriptions", related_query_name="subscription", to="feeds.person", verbose_name="follower")),
            ],
            options={
                "verbose_name": "subscription",
                "verbose_name_plural": "subscriptions",
                "unique_together": {("follower", "topic")},
            },
        ),
    ]
