from .admission import ContentAdmissionSpecification, strip_html
from .base import AndSpecification, BaseSpecification, NotSpecification, OrSpecification
from .memory import (
    ChatSpecification,
    CurrentSpecification,
    LayerSpecification,
    MemoryTypeSpecification,
    TimeRangeSpecification,
    build_search_filter,
)
