"""Management command to create the workshop permission groups."""

from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType
from django.core.management.base import BaseCommand

from inspections.models import InspectionJob, RepairItem

# Group name -> (model, codename) pairs
GROUP_PERMISSIONS = {
    "Workshop Admin": [
        (InspectionJob, "can_override_workflow"),
        (InspectionJob, "can_advise_jobs"),
        (InspectionJob, "can_inspect_vehicles"),
        (InspectionJob, "view_inspectionjob"),
        (InspectionJob, "change_inspectionjob"),
        (RepairItem, "view_repairitem"),
        (RepairItem, "change_repairitem"),
    ],
    "Service Advisor": [
        (InspectionJob, "can_advise_jobs"),
        (InspectionJob, "view_inspectionjob"),
        (RepairItem, "view_repairitem"),
        (RepairItem, "change_repairitem"),
    ],
    "Technician": [
        (InspectionJob, "can_inspect_vehicles"),
        (InspectionJob, "view_inspectionjob"),
        (RepairItem, "view_repairitem"),
    ],
    "Viewer": [
        (InspectionJob, "view_inspectionjob"),
        (RepairItem, "view_repairitem"),
    ],
}


def get_perm(model, codename):
    content_type = ContentType.objects.get_for_model(model)
    return Permission.objects.get(codename=codename, content_type=content_type)


class Command(BaseCommand):
    help = "Create the workshop permission groups with their permissions"

    def handle(self, *args, **options):
        for name, perms in GROUP_PERMISSIONS.items():
            group, _ = Group.objects.get_or_create(name=name)
            group.permissions.set(
                [get_perm(model, codename) for model, codename in perms]
            )
            self.stdout.write(
                self.style.SUCCESS(f"Created/updated '{name}' group")
            )

        self.stdout.write(
            self.style.SUCCESS("All permission groups configured.")
        )
