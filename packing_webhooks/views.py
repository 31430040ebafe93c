import json
import logging

from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .services import store, uploads
from .services.store import AssortmentNotFound, InvalidAssortmentId
from .utils import (
    ASSORTMENT_ID_PREFIX,
    count_assortment_images,
    get_frontend_url,
)

logger = logging.getLogger(__name__)


def _failure(message, http_status, error=None, **extra):
    body = {"success": False, "message": message, **extra}
    if error:
        body["error"] = error
    return Response(body, status=http_status)


def _parse_json_field(value, field_name):
    if not value:
        return {}
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Failed to parse %s: %r", field_name, value)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _order_summary(order):
    return {
        "orderName": order.order_name,
        "customer": (order.sales_order or {}).get("customer"),
        "assortmentCount": len(order.assortments or []),
        "totalImages": (order.metadata or {}).get("totalImages", 0),
        "status": order.status,
        "receivedAt": order.received_at,
        "processedAt": order.processed_at,
    }


def _order_document(order):
    return {
        "id": order.pk,
        "orderName": order.order_name,
        "salesOrder": order.sales_order,
        "assortments": order.assortments,
        "status": order.status,
        "receivedAt": order.received_at,
        "processedAt": order.processed_at,
        "errorMessage": order.error_message or None,
        "metadata": order.metadata,
    }


class BasePackingView(APIView):
    """Base view for the packing-instruction endpoints.

    Webhook callers are unauthenticated; every response uses the
    ``{success, message?, error?, data?}`` envelope.
    """

    authentication_classes = []
    permission_classes = [AllowAny]


# ---------------------------------------------------------------------------
# Webhook intake
# ---------------------------------------------------------------------------


class SalesOrderWebhookView(BasePackingView):
    """Receives ``{salesOrder, assortments}`` for one sales order."""

    def post(self, request, order_name):
        payload = request.data if isinstance(request.data, dict) else {}
        assortments = payload.get("assortments") or []

        # Single-assortment deliveries named after an item number belong on
        # the individual endpoint.
        if order_name.startswith(ASSORTMENT_ID_PREFIX) and len(assortments) == 1:
            logger.info("Redirecting individual assortment to proper endpoint: %s", order_name)
            target = f"/webhook/individual-assortment/{order_name}"
            return _failure(
                f"Use POST {target} for individual assortments",
                status.HTTP_400_BAD_REQUEST,
                error="Wrong endpoint for individual assortment",
                redirectTo=target,
            )

        logger.info(
            "Received sales order webhook: %s (%d assortments)", order_name, len(assortments)
        )
        try:
            order = store.save_order_webhook(order_name, payload)
        except Exception as exc:
            logger.exception("Sales order webhook error for %s", order_name)
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Sales order webhook processing failed",
                orderName=order_name,
            )

        store.mark_processed(order_name)
        return Response(
            {
                "success": True,
                "message": "Sales order webhook data saved successfully",
                "orderName": order_name,
                "dataId": order.pk,
                "totalImages": order.metadata["totalImages"],
                "frontendUrl": f"{get_frontend_url()}/packing-instruction/{order_name}",
            },
            status=status.HTTP_200_OK,
        )


def _individual_saved_response(record, assortment, assortment_id, message):
    return Response(
        {
            "success": True,
            "message": message,
            "assortmentId": assortment_id,
            "itemNo": assortment.get("itemNo"),
            "dataId": record.pk,
            "version": record.current_version,
            "cacheKey": record.cache_key,
            "totalImages": count_assortment_images([assortment]),
            "persistentStorageEnabled": True,
            "frontendUrl": f"{get_frontend_url()}/packing-instruction/{assortment_id}",
        },
        status=status.HTTP_200_OK,
    )


class IndividualAssortmentWebhookView(BasePackingView):
    """Receives ``{assortment}`` for one standalone assortment."""

    def post(self, request, assortment_id):
        assortment = (request.data or {}).get("assortment") if isinstance(request.data, dict) else None
        if not assortment or not assortment.get("itemNo"):
            return _failure(
                "Missing assortment data in webhook payload",
                status.HTTP_400_BAD_REQUEST,
                error="Individual assortment processing failed",
                assortmentId=assortment_id,
            )
        if assortment["itemNo"] != assortment_id:
            logger.warning(
                "Assortment ID mismatch: URL has %s, data has %s",
                assortment_id,
                assortment["itemNo"],
            )

        try:
            record = store.save_individual_assortment(assortment)
        except Exception as exc:
            logger.exception("Individual assortment webhook error for %s", assortment_id)
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Individual assortment processing failed",
                assortmentId=assortment_id,
            )

        return _individual_saved_response(
            record, assortment, assortment_id, "Individual assortment saved with persistent storage"
        )


class SaveAssortmentView(BasePackingView):
    """Saves an assortment taken from a sales order for standalone access."""

    def post(self, request):
        data = request.data if isinstance(request.data, dict) else {}
        assortment = data.get("assortment")
        if not assortment or not assortment.get("itemNo"):
            return _failure("Missing assortment with itemNo", status.HTTP_400_BAD_REQUEST)

        source_order_name = data.get("sourceOrderName")
        try:
            record = store.save_individual_assortment(assortment, source_order_name=source_order_name)
        except Exception as exc:
            logger.exception("Failed to save assortment %s", assortment["itemNo"])
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Assortment save failed",
                assortmentId=assortment["itemNo"],
            )

        return _individual_saved_response(
            record, assortment, assortment["itemNo"], "Assortment saved for standalone access"
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class WebhookDataView(BasePackingView):
    def get(self, request, order_name):
        order = store.get_order_webhook(order_name)
        if order is None:
            return _failure(
                f"No webhook data found for order: {order_name}",
                status.HTTP_404_NOT_FOUND,
                orderName=order_name,
            )
        return Response(
            {"success": True, "data": _order_document(order), "orderName": order_name}
        )


class AssortmentView(BasePackingView):
    """Individual store first, then the sales orders that embed the assortment."""

    def get(self, request, assortment_id):
        validate = request.query_params.get("validateCache") == "true"
        expected_hash = request.query_params.get("expectedHash")

        try:
            if validate and expected_hash:
                data, cache_valid, version = store.get_individual_assortment_with_cache_validation(
                    assortment_id, expected_hash
                )
                if data is not None:
                    body = {
                        "success": True,
                        "data": data,
                        "source": "individual",
                        "cacheValid": cache_valid,
                        "version": version,
                        "assortmentId": assortment_id,
                    }
                    if not cache_valid:
                        body["warning"] = "Cache may be stale, consider refreshing"
                    return Response(body)

            data = store.get_individual_assortment(assortment_id)
            if data is not None:
                return Response(
                    {
                        "success": True,
                        "data": data,
                        "source": "individual",
                        "cacheValid": True,
                        "persistentStorageEnabled": True,
                        "assortmentId": assortment_id,
                    }
                )

            data = store.find_assortment_in_order(assortment_id)
        except InvalidAssortmentId as exc:
            return _failure(str(exc), status.HTTP_400_BAD_REQUEST, assortmentId=assortment_id)
        except Exception as exc:
            logger.exception("Failed to get assortment data for %s", assortment_id)
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Failed to retrieve assortment data",
                assortmentId=assortment_id,
            )

        if data is None:
            return _failure(
                f"No assortment data found for ID: {assortment_id}",
                status.HTTP_404_NOT_FOUND,
                assortmentId=assortment_id,
            )
        return Response(
            {
                "success": True,
                "data": data,
                "source": "sales_order",
                "cacheValid": False,
                "persistentStorageEnabled": False,
                "assortmentId": assortment_id,
            }
        )

    def patch(self, request, assortment_id):
        changes = request.data if isinstance(request.data, dict) else {}
        changes = changes.get("userModifications") or changes
        try:
            record = store.update_user_modifications(assortment_id, changes)
        except AssortmentNotFound:
            return _failure(
                f"Assortment not found: {assortment_id}",
                status.HTTP_404_NOT_FOUND,
                assortmentId=assortment_id,
            )
        return Response(
            {
                "success": True,
                "message": "Assortment updated successfully",
                "assortmentId": assortment_id,
                "version": record.current_version,
                "data": record.assortment_data,
            }
        )


# ---------------------------------------------------------------------------
# Uploaded images
# ---------------------------------------------------------------------------


class AssortmentImagesView(BasePackingView):
    """Multipart upload: ``files``, ``fileMapping`` and ``imageLabels``."""

    def patch(self, request, assortment_id):
        files = request.FILES.getlist("files")
        file_mapping = _parse_json_field(request.data.get("fileMapping"), "fileMapping")
        image_labels = _parse_json_field(request.data.get("imageLabels"), "imageLabels")
        logger.info("Uploading %d images for assortment %s", len(files), assortment_id)

        try:
            processed = uploads.process_uploaded_files(files, image_labels, file_mapping)
            data = uploads.add_uploaded_images(assortment_id, processed, image_labels)
        except AssortmentNotFound:
            return _failure(
                f"Assortment not found: {assortment_id}",
                status.HTTP_404_NOT_FOUND,
                assortmentId=assortment_id,
            )
        except Exception as exc:
            logger.exception("Failed to upload images for %s", assortment_id)
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Image upload failed",
                assortmentId=assortment_id,
            )

        return Response(
            {
                "success": True,
                "message": "Images uploaded successfully",
                "assortmentId": assortment_id,
                "uploadedImageCount": len(files),
                "data": data,
            }
        )


def _delete_response(result, assortment_id):
    if not result.success:
        return _failure(result.message, status.HTTP_404_NOT_FOUND, assortmentId=assortment_id)
    return Response(
        {
            "success": True,
            "message": result.message,
            "assortmentId": assortment_id,
            "deletedCount": result.deleted_count,
            "data": result.assortment_data,
        }
    )


class BatchImageDeleteView(BasePackingView):
    def delete(self, request, assortment_id):
        data = request.data if isinstance(request.data, dict) else {}
        image_ids = data.get("imageIds")
        if not isinstance(image_ids, list):
            return _failure("imageIds must be a list", status.HTTP_400_BAD_REQUEST)
        try:
            result = uploads.delete_images(assortment_id, image_ids)
        except Exception as exc:
            logger.exception("Batch delete failed for %s", assortment_id)
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Image batch deletion failed",
                assortmentId=assortment_id,
            )
        return _delete_response(result, assortment_id)


class SingleImageDeleteView(BasePackingView):
    def delete(self, request, assortment_id, filename):
        try:
            result = uploads.delete_image(assortment_id, filename)
        except Exception as exc:
            logger.exception("Failed to delete image %s from %s", filename, assortment_id)
            return _failure(
                str(exc),
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                error="Image deletion failed",
                assortmentId=assortment_id,
            )
        return _delete_response(result, assortment_id)


class UploadedImageView(BasePackingView):
    def get(self, request, filename):
        found = uploads.find_image_by_filename(filename)
        if found is None:
            return _failure(f"Image {filename} not found", status.HTTP_404_NOT_FOUND)

        content, mimetype, size = found
        response = HttpResponse(content, content_type=mimetype or "application/octet-stream")
        response["Content-Length"] = str(size)
        response["Cache-Control"] = "public, max-age=3600"
        return response


# ---------------------------------------------------------------------------
# Statistics and maintenance
# ---------------------------------------------------------------------------


class WebhookStatsView(BasePackingView):
    def get(self, request):
        return Response({"success": True, "stats": store.stats()})


class RecentWebhooksView(BasePackingView):
    def get(self, request, limit=50):
        webhooks = store.list_recent(limit)
        return Response(
            {
                "success": True,
                "count": len(webhooks),
                "webhooks": [_order_summary(order) for order in webhooks],
            }
        )


class CacheStatsView(BasePackingView):
    def get(self, request):
        return Response(
            {
                "success": True,
                "cacheStatistics": store.cache_statistics(),
                "timestamp": timezone.now(),
            }
        )


class CacheCleanupView(BasePackingView):
    def delete(self, request):
        raw_days = request.query_params.get("olderThanDays")
        try:
            days = int(raw_days) if raw_days else 30
        except ValueError:
            return _failure("olderThanDays must be an integer", status.HTTP_400_BAD_REQUEST)

        deleted = store.cleanup_stale_assortments(days)
        return Response(
            {
                "success": True,
                "message": f"Cleaned up {deleted} old cache entries",
                "deletedCount": deleted,
                "olderThanDays": days,
            }
        )


class CacheInvalidateView(BasePackingView):
    def delete(self, request, assortment_id):
        if not store.invalidate_assortment_cache(assortment_id):
            return _failure(
                f"Failed to invalidate cache for assortment {assortment_id}",
                status.HTTP_404_NOT_FOUND,
                assortmentId=assortment_id,
            )
        return Response(
            {
                "success": True,
                "message": f"Cache invalidated for assortment {assortment_id}",
                "assortmentId": assortment_id,
            }
        )


class HealthView(BasePackingView):
    def get(self, request):
        return Response(
            {
                "status": "healthy",
                "service": "packing-webhooks",
                "timestamp": timezone.now(),
                "persistentStorageEnabled": True,
                "cacheManagement": "enabled",
            }
        )
