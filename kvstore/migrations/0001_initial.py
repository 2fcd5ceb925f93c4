import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ValueEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("token", models.UUIDField()),
                ("key", models.TextField()),
                ("version", models.PositiveIntegerField(default=1)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("payload", models.BinaryField()),
            ],
            options={
                "db_table": "kv_data",
            },
        ),
        migrations.AddConstraint(
            model_name="valueentry",
            constraint=models.UniqueConstraint(
                fields=("token", "key"), name="kv_data_token_key_uniq"
            ),
        ),
    ]
