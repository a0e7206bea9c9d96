import logging

from rest_framework.exceptions import ValidationError
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response

from cardflow.services.errors import WorkflowError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled error in %s', getattr(context.get('view'), '__name__', 'view'), exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error.'}},
                        status=500)
    if isinstance(exc, WorkflowError):
        code = exc.default_code
        message = str(exc.detail)
    elif isinstance(exc, ValidationError):
        code = 'invalid'
        message = resp.data
    else:
        code = getattr(exc, 'default_code', 'api_error')
        # normalize response
        if isinstance(resp.data, dict):
            message = resp.data.get('detail') or resp.data
        else:
            message = str(resp.data)
    error = {'code': code, 'message': message}
    if getattr(exc, 'retryable', False):
        error['retryable'] = True
    headers = {k: resp[k] for k in ('WWW-Authenticate', 'Retry-After') if resp.has_header(k)}
    return Response({'ok': False, 'error': error}, status=resp.status_code, headers=headers)
