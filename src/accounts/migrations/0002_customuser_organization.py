import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("accounts", "0001_initial"),
        ("inspections", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="customuser",
            name="organization",
            field=models.ForeignKey(
                blank=True,
                help_text="Jobs outside this organization are not visible",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="staff",
                to="inspections.organization",
            ),
        ),
    ]
