from django.db import migrations


def seed_refresh_status(apps, schema_editor):
    RefreshStatus = apps.get_model("countries", "RefreshStatus")
    RefreshStatus.objects.get_or_create(pk=1, defaults={"total_countries": 0, "version": 0})


class Migration(migrations.Migration):

    dependencies = [
        ("countries", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_refresh_status, migrations.RunPython.noop),
    ]
