from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET

from .job_status import JOB_NAMES, get_all_statuses, get_status


@require_GET
def job_status_view(request: HttpRequest) -> JsonResponse:
    job = request.GET.get("job")
    if job is None:
        return JsonResponse({"jobs": get_all_statuses()})
    if job not in JOB_NAMES:
        return JsonResponse({"detail": f"Unknown job: {job}"}, status=400)
    status = get_status(job)
    if status is None:
        return JsonResponse({"detail": f"{job} has not run yet"}, status=404)
    return JsonResponse(status)
