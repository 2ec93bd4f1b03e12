import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Playlist",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("owner_id", models.CharField(db_index=True, max_length=128)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("tracks", models.JSONField(blank=True, default=list)),
                ("seed_tracks", models.JSONField(blank=True, default=list)),
                ("generation_params", models.JSONField(blank=True, default=dict)),
                ("total_duration", models.BigIntegerField(default=0)),
                (
                    "remote_playlist_id",
                    models.CharField(blank=True, max_length=64, null=True),
                ),
                (
                    "created_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
            ],
            options={
                "ordering": ("-created_at",),
            },
        ),
        migrations.AddIndex(
            model_name="playlist",
            index=models.Index(
                fields=("owner_id", "-created_at"),
                name="generator_owner_created_idx",
            ),
        ),
    ]
