from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="processedwebhookevent",
            name="outcome",
            field=models.CharField(
                choices=[
                    ("applied", "Applied"),
                    ("ignored", "Ignored event type"),
                    ("uncorrelated", "No matching organization"),
                    ("stale", "Older than last applied event"),
                    ("superseded", "Ended a replaced subscription"),
                    ("failed", "Failed"),
                ],
                max_length=20,
            ),
        ),
    ]
