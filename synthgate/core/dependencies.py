from fastapi import Request

from synthgate.gateway.gateway import GenerationGateway


def get_gateway(request: Request) -> GenerationGateway:
    """The gateway instance built by the app lifespan."""
    return request.app.state.gateway
