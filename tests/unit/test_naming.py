import re

import pytest
from firehose_log_delivery.config import ConfigurationError
from firehose_log_delivery.delivery_pipeline import plan_subscription_filters
from firehose_log_delivery.naming import NamingService


def test_generated_suffix_is_eight_random_bytes_hex():
    naming = NamingService()
    assert re.match(r"^[0-9a-f]{16}$", naming.suffix)

def test_suffix_is_stable_for_the_instance():
    naming = NamingService()
    assert naming.suffix == naming.suffix
    assert naming.name("a") == naming.name("a")

def test_independent_instances_draw_different_suffixes():
    assert NamingService().suffix != NamingService().suffix

def test_seeded_suffix_is_deterministic():
    assert NamingService(seed="stack/LogDelivery").suffix == NamingService(seed="stack/LogDelivery").suffix
    assert NamingService(seed="stack/LogDelivery").suffix != NamingService(seed="other/LogDelivery").suffix
    assert re.match(r"^[0-9a-f]{16}$", NamingService(seed="stack/LogDelivery").suffix)

def test_pinned_suffix_wins_over_seed():
    assert NamingService("0123456789abcdef", seed="stack/LogDelivery").suffix == "0123456789abcdef"

def test_pinned_suffix_used_verbatim():
    naming = NamingService("0123456789abcdef")
    assert naming.name("firehose-log-delivery") == "firehose-log-delivery-0123456789abcdef"
    assert naming.name("a", "b") == "a-b-0123456789abcdef"

@pytest.mark.parametrize("suffix", ["", "0123", "0123456789ABCDEF", "0123456789abcdeg"])
def test_malformed_pinned_suffix_rejected(suffix):
    with pytest.raises(ConfigurationError, match="nameSuffix"):
        NamingService(suffix)

def test_subscription_filter_plan_preserves_order():
    naming = NamingService("0123456789abcdef")
    plan = plan_subscription_filters(["app-2", "app-1", "/aws/lambda/worker"], naming)

    assert [spec.log_group_name for spec in plan] == ["app-2", "app-1", "/aws/lambda/worker"]
    assert [spec.filter_name for spec in plan] == [
        "app-2-firehose-0123456789abcdef",
        "app-1-firehose-0123456789abcdef",
        "/aws/lambda/worker-firehose-0123456789abcdef",
    ]

def test_subscription_filter_construct_ids_are_distinct_and_path_safe():
    plan = plan_subscription_filters(["a/b", "a--b"], NamingService("0123456789abcdef"))
    ids = [spec.construct_id for spec in plan]
    assert len(set(ids)) == 2
    assert all(re.match(r"^Filter[0-9a-f]{16}$", construct_id) for construct_id in ids)

def test_subscription_filter_plan_for_no_log_groups():
    assert plan_subscription_filters([], NamingService("0123456789abcdef")) == []
