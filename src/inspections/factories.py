"""Factory Boy factories for health check test data."""

from decimal import Decimal

import factory
from factory.django import DjangoModelFactory


class UserFactory(DjangoModelFactory):
    """Factory for CustomUser model."""

    class Meta:
        model = "accounts.CustomUser"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")
    display_name = factory.Faker("name")
    is_active = True

    @factory.post_generation
    def password(self, create, extracted, **kwargs):
        pwd = extracted or "testpass123!"
        self.set_password(pwd)
        if create:
            self.save(update_fields=["password"])


class OrganizationFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.Organization"

    name = factory.Sequence(lambda n: f"Workshop Group {n}")


class SiteFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.Site"

    organization = factory.SubFactory(OrganizationFactory)
    name = factory.Sequence(lambda n: f"Site {n}")


class CustomerFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.Customer"

    organization = factory.SubFactory(OrganizationFactory)
    first_name = factory.Faker("first_name")
    last_name = factory.Faker("last_name")
    email = factory.Sequence(lambda n: f"customer{n}@example.com")


class VehicleFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.Vehicle"

    customer = factory.SubFactory(CustomerFactory)
    registration = factory.Sequence(lambda n: f"AB{n:02d} CDE")
    make = "Ford"
    model = "Focus"


class InspectionJobFactory(DjangoModelFactory):
    """Factory for InspectionJob model.

    Sets ``status`` directly; tests that exercise transitions start from
    the status they need.
    """

    class Meta:
        model = "inspections.InspectionJob"

    organization = factory.SubFactory(OrganizationFactory)
    site = factory.SubFactory(
        SiteFactory, organization=factory.SelfAttribute("..organization")
    )
    customer = factory.SubFactory(
        CustomerFactory, organization=factory.SelfAttribute("..organization")
    )
    vehicle = factory.SubFactory(
        VehicleFactory, customer=factory.SelfAttribute("..customer")
    )
    status = "created"


class FindingFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.Finding"

    job = factory.SubFactory(InspectionJobFactory)
    name = factory.Sequence(lambda n: f"Finding {n}")
    rag_status = "red"


class RepairItemFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.RepairItem"

    job = factory.SubFactory(InspectionJobFactory)
    name = factory.Sequence(lambda n: f"Repair {n}")
    rag_status = "amber"


class RepairOptionFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.RepairOption"

    repair_item = factory.SubFactory(RepairItemFactory)
    name = factory.Sequence(lambda n: f"Option {n}")
    total_inc_vat = Decimal("120.00")


class RepairLabourFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.RepairLabour"

    repair_item = factory.SubFactory(RepairItemFactory)
    description = "Fit"
    hours = Decimal("1.00")
    rate = Decimal("80.00")
    total = Decimal("80.00")


class RepairPartFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.RepairPart"

    repair_item = factory.SubFactory(RepairItemFactory)
    description = "Brake pads"
    sell_price = Decimal("40.00")
    total = Decimal("40.00")


class TimeEntryFactory(DjangoModelFactory):
    class Meta:
        model = "inspections.TimeEntry"

    job = factory.SubFactory(InspectionJobFactory)
    technician = factory.SubFactory(UserFactory)
