import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("webinar_data", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Poll",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("poll_external_id", models.CharField(max_length=64)),
                ("title", models.CharField(max_length=500, null=True)),
                ("poll_type", models.CharField(max_length=64, null=True)),
                ("status", models.CharField(max_length=64, null=True)),
                ("anonymous", models.BooleanField(default=False)),
                ("respondent_name", models.CharField(max_length=255, null=True)),
                ("respondent_email", models.CharField(max_length=255, null=True)),
                ("questions", models.JSONField(default=list)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "webinar",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="polls",
                        to="webinar_data.webinar",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("webinar", "poll_external_id"),
                        name="unique_poll_per_webinar",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="WebinarQuestion",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("question_external_id", models.CharField(max_length=64)),
                ("question", models.TextField(null=True)),
                ("answer", models.TextField(null=True)),
                ("asker_name", models.CharField(max_length=255, null=True)),
                ("asker_email", models.CharField(max_length=255, null=True)),
                ("answered_by", models.CharField(max_length=255, null=True)),
                ("asked_at", models.DateTimeField(null=True)),
                ("answered_at", models.DateTimeField(null=True)),
                ("upvote_count", models.IntegerField(default=0)),
                ("status", models.CharField(default="open", max_length=32)),
                ("anonymous", models.BooleanField(default=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "webinar",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="questions",
                        to="webinar_data.webinar",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("webinar", "question_external_id"),
                        name="unique_question_per_webinar",
                    )
                ],
            },
        ),
    ]
