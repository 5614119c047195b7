import django.db.models.deletion
from django.db import migrations, models


def _id_field() -> models.BigAutoField:
    return models.BigAutoField(
        auto_created=True,
        primary_key=True,
        serialize=False,
        verbose_name="ID",
    )


class Migration(migrations.Migration):
    initial = True

    dependencies: list[tuple[str, str]] = []

    operations = [
        migrations.CreateModel(
            name="Connection",
            fields=[
                ("id", _id_field()),
                ("external_account_id", models.CharField(max_length=255)),
                ("credential_reference", models.CharField(blank=True, max_length=255, null=True)),
                ("display_name", models.CharField(blank=True, max_length=255, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name="Webinar",
            fields=[
                ("id", _id_field()),
                ("external_id", models.CharField(max_length=64)),
                ("uuid", models.CharField(max_length=255, null=True)),
                ("topic", models.CharField(max_length=500, null=True)),
                ("agenda", models.TextField(null=True)),
                ("host_id", models.CharField(max_length=64, null=True)),
                ("host_email", models.CharField(max_length=255, null=True)),
                ("webinar_type", models.IntegerField(null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("scheduled", "Scheduled"),
                            ("live", "Live"),
                            ("ended", "Ended"),
                            ("aborted", "Aborted"),
                            ("deleted", "Deleted"),
                            ("unknown", "Unknown"),
                        ],
                        default="unknown",
                        max_length=20,
                    ),
                ),
                ("raw_status", models.CharField(max_length=64, null=True)),
                ("start_time", models.DateTimeField(null=True)),
                ("duration_minutes", models.IntegerField(null=True)),
                ("timezone", models.CharField(max_length=64, null=True)),
                ("join_url", models.TextField(null=True)),
                ("registration_url", models.TextField(null=True)),
                ("settings", models.JSONField(null=True)),
                ("webinar_created_at", models.DateTimeField(null=True)),
                ("total_registrants", models.IntegerField(default=0)),
                ("total_attendees", models.IntegerField(default=0)),
                ("total_minutes", models.IntegerField(default=0)),
                ("avg_attendance_duration", models.IntegerField(null=True)),
                (
                    "participant_sync_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("synced", "Synced"),
                            ("no_participants", "No Participants"),
                            ("not_eligible", "Not Eligible"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("participant_sync_error", models.TextField(null=True)),
                ("participant_sync_attempted_at", models.DateTimeField(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "connection",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="webinars",
                        to="webinar_data.connection",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("connection", "external_id"),
                        name="unique_webinar_per_connection",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Participant",
            fields=[
                ("id", _id_field()),
                ("participant_external_id", models.CharField(max_length=64)),
                ("name", models.CharField(max_length=255, null=True)),
                ("email", models.CharField(max_length=255, null=True)),
                ("user_id", models.CharField(max_length=64, null=True)),
                ("registrant_id", models.CharField(max_length=64, null=True)),
                ("join_time", models.DateTimeField(null=True)),
                ("leave_time", models.DateTimeField(null=True)),
                ("duration", models.IntegerField(default=0)),
                ("device", models.CharField(max_length=255, null=True)),
                ("location", models.CharField(max_length=255, null=True)),
                ("status", models.CharField(max_length=64, null=True)),
                ("attentiveness_score", models.IntegerField(null=True)),
                ("posted_chat", models.BooleanField(default=False)),
                ("raised_hand", models.BooleanField(default=False)),
                ("answered_polling", models.BooleanField(default=False)),
                ("asked_question", models.BooleanField(default=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "webinar",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="participants",
                        to="webinar_data.webinar",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("webinar", "participant_external_id", "join_time"),
                        name="unique_participant_session",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Registrant",
            fields=[
                ("id", _id_field()),
                ("registrant_external_id", models.CharField(max_length=64)),
                ("email", models.CharField(max_length=255, null=True)),
                ("first_name", models.CharField(max_length=255, null=True)),
                ("last_name", models.CharField(max_length=255, null=True)),
                ("status", models.CharField(max_length=64, null=True)),
                ("join_url", models.TextField(null=True)),
                ("registered_at", models.DateTimeField(null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "webinar",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="registrants",
                        to="webinar_data.webinar",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("webinar", "registrant_external_id"),
                        name="unique_registrant_per_webinar",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncRun",
            fields=[
                ("id", _id_field()),
                ("sync_type", models.CharField(max_length=32)),
                (
                    "sync_status",
                    models.CharField(
                        choices=[
                            ("started", "Started"),
                            ("in_progress", "In Progress"),
                            ("completed", "Completed"),
                            ("completed_with_errors", "Completed With Errors"),
                            ("partial", "Partial"),
                            ("failed", "Failed"),
                        ],
                        default="started",
                        max_length=32,
                    ),
                ),
                ("stage", models.CharField(max_length=64, null=True)),
                ("current_webinar_external_id", models.CharField(max_length=64, null=True)),
                ("progress_percentage", models.IntegerField(default=0)),
                ("processed_items", models.IntegerField(default=0)),
                ("total_items", models.IntegerField(default=0)),
                ("started_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("error_message", models.TextField(null=True)),
                ("error_details", models.JSONField(default=list)),
                ("fetch_summary", models.JSONField(null=True)),
                ("baseline", models.JSONField(null=True)),
                ("verification", models.JSONField(null=True)),
                (
                    "connection",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sync_runs",
                        to="webinar_data.connection",
                    ),
                ),
            ],
            options={
                "verbose_name": "Sync Run",
                "verbose_name_plural": "Sync Runs",
                "ordering": ["-started_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="RetryScheduleEntry",
            fields=[
                ("id", _id_field()),
                ("entity_id", models.CharField(max_length=64)),
                ("attempt_number", models.IntegerField(default=1)),
                ("error_class", models.CharField(max_length=32)),
                ("scheduled_for", models.DateTimeField()),
                ("original_error", models.TextField(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "connection",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="retry_entries",
                        to="webinar_data.connection",
                    ),
                ),
                (
                    "webinar",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="retry_entries",
                        to="webinar_data.webinar",
                    ),
                ),
            ],
            options={
                "ordering": ["scheduled_for", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("connection", "entity_id"),
                        name="unique_retry_per_entity",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="SyncExclusion",
            fields=[
                ("id", _id_field()),
                ("webinar_external_id", models.CharField(max_length=64)),
                ("reason", models.CharField(max_length=255, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "connection",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="exclusions",
                        to="webinar_data.connection",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("connection", "webinar_external_id"),
                        name="unique_exclusion_per_connection",
                    )
                ],
            },
        ),
    ]
