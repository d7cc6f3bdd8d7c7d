from fastapi import Depends

from spanlight.services.classifier import SpanClassifier, build_classifier
from spanlight.services.labeling_cache import LabelingCache, get_labeling_cache


def span_classifier() -> SpanClassifier:
    return build_classifier()


def labeling_cache() -> LabelingCache:
    return get_labeling_cache()


ClassifierDep = Depends(span_classifier)
LabelingCacheDep = Depends(labeling_cache)
