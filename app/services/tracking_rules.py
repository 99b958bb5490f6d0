"""Per-type rules shared by the tracking API, sync jobs and recommendations.

The ``match`` statements end in ``assert_never`` so the type checker flags
any TrackingType or TrackingStatus member that lacks a case.
"""

from collections.abc import Iterable
from typing import Any, assert_never

from app.models.tracking import Destination, TrackingStatus, TrackingType


def requires_ads(destinations: Iterable[str | Destination]) -> bool:
    """Whether a Google Ads job is needed: GOOGLE_ADS or BOTH selected.

    Used for create, update and delete alike.
    """
    values = {Destination(d) for d in destinations}
    return Destination.GOOGLE_ADS in values or Destination.BOTH in values


def requires_ga4(destinations: Iterable[str | Destination]) -> bool:
    values = {Destination(d) for d in destinations}
    return Destination.GA4 in values or Destination.BOTH in values


def default_ga4_event_name(tracking_type: TrackingType) -> str:
    """GA4 event name used when the user does not provide one."""
    match tracking_type:
        case TrackingType.BUTTON_CLICK:
            return "button_click"
        case TrackingType.LINK_CLICK:
            return "link_click"
        case TrackingType.PAGE_VIEW:
            return "page_view"
        case TrackingType.ELEMENT_VISIBILITY:
            return "element_visible"
        case TrackingType.FORM_SUBMIT:
            return "form_submit"
        case TrackingType.FORM_START:
            return "form_start"
        case TrackingType.FORM_ABANDON:
            return "form_abandon"
        case TrackingType.ADD_TO_CART:
            return "add_to_cart"
        case TrackingType.REMOVE_FROM_CART:
            return "remove_from_cart"
        case TrackingType.ADD_TO_WISHLIST:
            return "add_to_wishlist"
        case TrackingType.VIEW_CART:
            return "view_cart"
        case TrackingType.CHECKOUT_START:
            return "begin_checkout"
        case TrackingType.CHECKOUT_STEP:
            return "checkout_progress"
        case TrackingType.PURCHASE:
            return "purchase"
        case TrackingType.PRODUCT_VIEW:
            return "view_item"
        case TrackingType.PHONE_CALL_CLICK:
            return "phone_call_click"
        case TrackingType.EMAIL_CLICK:
            return "email_click"
        case TrackingType.DOWNLOAD | TrackingType.FILE_DOWNLOAD:
            return "file_download"
        case TrackingType.DEMO_REQUEST:
            return "request_demo"
        case TrackingType.SIGNUP:
            return "sign_up"
        case TrackingType.SCROLL_DEPTH:
            return "scroll"
        case TrackingType.TIME_ON_PAGE:
            return "time_on_page"
        case TrackingType.VIDEO_PLAY:
            return "video_start"
        case TrackingType.VIDEO_COMPLETE:
            return "video_complete"
        case TrackingType.SITE_SEARCH:
            return "search"
        case TrackingType.FILTER_USE:
            return "filter_use"
        case TrackingType.TAB_SWITCH:
            return "tab_switch"
        case TrackingType.ACCORDION_EXPAND:
            return "accordion_expand"
        case TrackingType.MODAL_OPEN:
            return "modal_open"
        case TrackingType.SOCIAL_SHARE:
            return "share"
        case TrackingType.SOCIAL_CLICK:
            return "social_click"
        case TrackingType.PDF_DOWNLOAD:
            return "pdf_download"
        case TrackingType.NEWSLETTER_SIGNUP:
            return "newsletter_signup"
        case TrackingType.CUSTOM_EVENT:
            return "custom_event"
        case _:
            assert_never(tracking_type)


def status_label(status: TrackingStatus) -> str:
    match status:
        case TrackingStatus.PENDING:
            return "Pending Sync"
        case TrackingStatus.CREATING:
            return "Creating in GTM"
        case TrackingStatus.ACTIVE:
            return "Active"
        case TrackingStatus.FAILED:
            return "Sync Failed"
        case TrackingStatus.PAUSED:
            return "Paused"
        case TrackingStatus.SYNCING:
            return "Syncing Updates"
        case _:
            assert_never(status)


def status_color(status: TrackingStatus) -> str:
    match status:
        case TrackingStatus.PENDING:
            return "yellow"
        case TrackingStatus.CREATING | TrackingStatus.SYNCING:
            return "blue"
        case TrackingStatus.ACTIVE:
            return "green"
        case TrackingStatus.FAILED:
            return "red"
        case TrackingStatus.PAUSED:
            return "gray"
        case _:
            assert_never(status)


def ads_conversion_category(tracking_type: TrackingType) -> str:
    """Google Ads ConversionActionCategory for a tracking type."""
    match tracking_type:
        case TrackingType.PURCHASE:
            return "PURCHASE"
        case TrackingType.ADD_TO_CART:
            return "ADD_TO_CART"
        case TrackingType.CHECKOUT_START | TrackingType.CHECKOUT_STEP:
            return "BEGIN_CHECKOUT"
        case TrackingType.SIGNUP | TrackingType.NEWSLETTER_SIGNUP:
            return "SIGNUP"
        case TrackingType.FORM_SUBMIT:
            return "SUBMIT_LEAD_FORM"
        case TrackingType.DEMO_REQUEST:
            return "REQUEST_QUOTE"
        case TrackingType.PHONE_CALL_CLICK:
            return "PHONE_CALL_LEAD"
        case TrackingType.EMAIL_CLICK:
            return "CONTACT"
        case TrackingType.PAGE_VIEW | TrackingType.PRODUCT_VIEW | TrackingType.VIEW_CART:
            return "PAGE_VIEW"
        case TrackingType.DOWNLOAD | TrackingType.FILE_DOWNLOAD | TrackingType.PDF_DOWNLOAD:
            return "DOWNLOAD"
        case _:
            return "DEFAULT"


def _filter(variable: str, value: str, operator: str = "contains") -> dict[str, Any]:
    return {
        "type": operator,
        "parameter": [
            {"type": "template", "key": "arg0", "value": variable},
            {"type": "template", "key": "arg1", "value": value},
        ],
    }


def trigger_body(
    name: str,
    tracking_type: TrackingType,
    event_name: str,
    selector: str | None,
    url_pattern: str | None,
) -> dict[str, Any]:
    """GTM trigger resource for a tracking.

    Click types filter on ``{{Click Element}}``, page views on ``{{Page URL}}``,
    form submits use the native form trigger; everything else listens for a
    dataLayer event carrying the GA4 event name.
    """
    body: dict[str, Any] = {"name": f"{name} - Trigger"}
    match tracking_type:
        case TrackingType.BUTTON_CLICK | TrackingType.LINK_CLICK:
            body["type"] = "click"
            if selector:
                body["filter"] = [_filter("{{Click Element}}", selector, "cssSelector")]
        case TrackingType.PAGE_VIEW:
            body["type"] = "pageview"
            if url_pattern:
                body["filter"] = [_filter("{{Page URL}}", url_pattern)]
        case TrackingType.FORM_SUBMIT:
            body["type"] = "formSubmission"
            if selector:
                body["filter"] = [_filter("{{Form Element}}", selector, "cssSelector")]
        case _:
            body["type"] = "customEvent"
            body["customEventFilter"] = [_filter("{{_event}}", event_name, "equals")]
            if url_pattern:
                body["filter"] = [_filter("{{Page URL}}", url_pattern)]
    return body


def ga4_tag_body(
    name: str,
    event_name: str,
    measurement_id: str,
    trigger_id: str,
    parameters: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """GA4 event tag (``gaawe``) firing on the tracking's trigger."""
    params: list[dict[str, Any]] = [
        {"type": "template", "key": "eventName", "value": event_name},
        {"type": "template", "key": "measurementIdOverride", "value": measurement_id},
    ]
    if parameters:
        params.append({
            "type": "list",
            "key": "eventSettingsTable",
            "list": [
                {
                    "type": "map",
                    "map": [
                        {"type": "template", "key": "parameter", "value": str(key)},
                        {"type": "template", "key": "parameterValue", "value": str(value)},
                    ],
                }
                for key, value in parameters.items()
            ],
        })
    return {
        "name": f"{name} - Tag",
        "type": "gaawe",
        "parameter": params,
        "firingTriggerId": [trigger_id],
    }


def ads_tag_body(
    name: str,
    conversion_id: str,
    conversion_label: str,
    trigger_id: str,
    conversion_value: float | None = None,
) -> dict[str, Any]:
    """Google Ads conversion tag (``awct``) firing on the tracking's trigger."""
    params: list[dict[str, Any]] = [
        {"type": "template", "key": "conversionId", "value": conversion_id},
        {"type": "template", "key": "conversionLabel", "value": conversion_label},
    ]
    if conversion_value is not None:
        params.append({"type": "template", "key": "conversionValue", "value": str(conversion_value)})
    return {
        "name": f"{name} - Ads Tag",
        "type": "awct",
        "parameter": params,
        "firingTriggerId": [trigger_id],
    }
