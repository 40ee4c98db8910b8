"""Request-scoped access to the service graph built at startup."""

from fastapi import Request

from renewal_sync.bootstrap import Services


def get_services(request: Request) -> Services:
    return request.app.state.services
