from fastapi import Request

from wordledger.services.aggregator.client import LipiaClient


def get_aggregator(request: Request) -> LipiaClient:
    return request.app.state.aggregator
