from fastapi import Request

from app.features.seo.services.aggregation import SeoAggregationService


def get_seo_aggregation_service(request: Request) -> SeoAggregationService:
    return request.app.state.seo_aggregation
