"""
Tests for the content cache key.
"""
from landedcost.services.cache_key import build_key_inputs, compute_cache_key, hash_image
from landedcost.services.schemas import EstimateParams, ImageRef, InputImages


SCENARIO = {
    "image_hash": "H1",
    "barcode_hash": "H2",
    "label_hash": "H3",
    "quantity": 100,
    "duty_rate": 0.05,
    "shipping_cost": 20,
    "fee": 2,
    "destination": "US",
    "shipping_mode": "air",
    "requester_id": "user-1",
    "pipeline_version": "2024.2",
}


class TestComputeCacheKey:
    """Semantically identical inputs must hash identically."""

    def test_field_order_does_not_matter(self):
        reordered = dict(reversed(list(SCENARIO.items())))
        assert compute_cache_key(SCENARIO) == compute_cache_key(reordered)

    def test_int_and_float_numbers_hash_the_same(self):
        as_floats = {**SCENARIO, "quantity": 100.0, "shipping_cost": 20.0, "fee": 2.0}
        assert compute_cache_key(SCENARIO) == compute_cache_key(as_floats)

    def test_destination_and_mode_case_insensitive(self):
        shouted = {**SCENARIO, "destination": " us ", "shipping_mode": "AIR"}
        assert compute_cache_key(SCENARIO) == compute_cache_key(shouted)

    def test_missing_optional_field_equals_explicit_none(self):
        without = {k: v for k, v in SCENARIO.items() if k != "label_hash"}
        assert compute_cache_key(without) == compute_cache_key({**SCENARIO, "label_hash": None})

    def test_different_params_change_the_key(self):
        assert compute_cache_key(SCENARIO) != compute_cache_key({**SCENARIO, "quantity": 101})
        assert compute_cache_key(SCENARIO) != compute_cache_key({**SCENARIO, "requester_id": "user-2"})
        assert compute_cache_key(SCENARIO) != compute_cache_key({**SCENARIO, "pipeline_version": "2025.1"})

    def test_unknown_fields_are_ignored(self):
        assert compute_cache_key(SCENARIO) == compute_cache_key({**SCENARIO, "trace_id": "abc"})

    def test_key_is_sha256_hex(self):
        key = compute_cache_key(SCENARIO)
        assert len(key) == 64
        int(key, 16)


class TestBuildKeyInputs:
    """Request models map onto cache key fields."""

    def test_same_request_builds_same_key(self):
        images = InputImages(
            product=ImageRef(url="https://img.test/plush_toy_bear.jpg"),
            label=ImageRef(url="https://img.test/label.jpg"),
        )
        params = EstimateParams(quantity=100, duty_rate=0.05, shipping_cost=20, fee=2)
        first = compute_cache_key(build_key_inputs(images, params, "user-1", "2024.2"))
        second = compute_cache_key(build_key_inputs(images.model_copy(), params.model_copy(), "user-1", "2024.2"))
        assert first == second

    def test_inline_image_hashes_content(self):
        import base64
        data = base64.b64encode(b"image-bytes").decode()
        assert hash_image(ImageRef(data_base64=data)) == hash_image(ImageRef(data_base64=data))
        assert hash_image(None) is None
