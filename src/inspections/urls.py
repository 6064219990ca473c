"""URL configuration for the inspections app."""

from django.urls import path

from . import views

app_name = "inspections"

urlpatterns = [
    # Staff
    path("api/jobs/<int:job_id>/", views.job_detail, name="job_detail"),
    path(
        "api/jobs/<int:job_id>/status/",
        views.job_change_status,
        name="job_change_status",
    ),
    path("api/jobs/<int:job_id>/arrive/", views.job_arrive, name="job_arrive"),
    path(
        "api/jobs/<int:job_id>/no-show/",
        views.job_no_show,
        name="job_no_show",
    ),
    path(
        "api/jobs/<int:job_id>/reschedule/",
        views.job_reschedule,
        name="job_reschedule",
    ),
    path(
        "api/jobs/<int:job_id>/checkin/",
        views.job_checkin,
        name="job_checkin",
    ),
    path("api/jobs/<int:job_id>/assign/", views.job_assign, name="job_assign"),
    path("api/jobs/<int:job_id>/cancel/", views.job_cancel, name="job_cancel"),
    path(
        "api/jobs/<int:job_id>/clock-in/",
        views.job_clock_in,
        name="job_clock_in",
    ),
    path(
        "api/jobs/<int:job_id>/clock-out/",
        views.job_clock_out,
        name="job_clock_out",
    ),
    path(
        "api/jobs/<int:job_id>/time-entries/",
        views.job_time_entries,
        name="job_time_entries",
    ),
    path(
        "api/jobs/<int:job_id>/can-complete/",
        views.job_can_complete,
        name="job_can_complete",
    ),
    path("api/jobs/<int:job_id>/close/", views.job_close, name="job_close"),
    path(
        "api/jobs/<int:job_id>/publish/",
        views.job_publish,
        name="job_publish",
    ),
    path(
        "api/jobs/<int:job_id>/authorize/",
        views.job_authorize,
        name="job_authorize",
    ),
    path(
        "api/jobs/<int:job_id>/items/outcome/",
        views.job_bulk_outcome,
        name="job_bulk_outcome",
    ),
    path(
        "api/items/<int:item_id>/outcome/",
        views.item_outcome,
        name="item_outcome",
    ),
    path(
        "api/items/<int:item_id>/labour/",
        views.item_add_labour,
        name="item_add_labour",
    ),
    path(
        "api/items/<int:item_id>/parts/",
        views.item_add_part,
        name="item_add_part",
    ),
    path(
        "api/items/<int:item_id>/<str:side>/complete/",
        views.item_complete_side,
        name="item_complete_side",
    ),
    # Customer portal
    path("vhc/<str:token>/", views.portal_view, name="portal_view"),
    path(
        "vhc/<str:token>/items/<int:item_id>/approve/",
        views.portal_approve_item,
        name="portal_approve_item",
    ),
    path(
        "vhc/<str:token>/items/<int:item_id>/decline/",
        views.portal_decline_item,
        name="portal_decline_item",
    ),
    path(
        "vhc/<str:token>/approve-all/",
        views.portal_approve_all,
        name="portal_approve_all",
    ),
    path(
        "vhc/<str:token>/decline-all/",
        views.portal_decline_all,
        name="portal_decline_all",
    ),
]
