"""Settings (de)serialization, diffing and mask filters."""

import numpy as np
import pytest

from conftest import make_buffer
from tiff_visualizer.buffers import ElementKind
from tiff_visualizer.masks import MaskFilter, apply_mask_filter, apply_mask_filters
from tiff_visualizer.settings import (
    RenderOptions,
    ViewSettings,
    diff_settings,
    load_settings,
    save_settings,
    view_settings_from_dict,
    view_settings_to_dict,
)


HOST_PAYLOAD = {
    "normalization": {"min": 0.1, "max": 0.9, "autoNormalize": False, "gammaMode": True},
    "gamma": {"in": 2.2, "out": 1.0},
    "brightness": {"offset": -1.0},
    "nanColor": "fuchsia",
    "rgbAs24BitGrayscale": True,
    "scale24BitFactor": 100,
    "normalizedFloatMode": True,
    "maskFilters": [{"maskUri": "mask.tif", "threshold": 0.25, "filterHigher": False}],
}


class TestViewSettings:
    """Host payloads and validation."""

    def test_from_dict(self):
        settings = view_settings_from_dict(HOST_PAYLOAD)
        assert settings.normalization.gamma_mode
        assert settings.normalization.normalized_float_mode
        assert settings.normalization.min == pytest.approx(0.1)
        assert settings.tone.gamma_in == pytest.approx(2.2)
        assert settings.tone.exposure_stops == -1.0
        assert settings.render_options().nan_color == (255, 0, 255)
        assert settings.scale_24bit_factor == 100.0
        assert settings.mask_filters == (MaskFilter("mask.tif", threshold=0.25, filter_higher=False),)

    def test_missing_keys_keep_fallback(self):
        fallback = ViewSettings().with_tone(gamma_out=2.0)
        settings = view_settings_from_dict({"nanColor": "fuchsia"}, fallback=fallback)
        assert settings.tone.gamma_out == 2.0
        assert settings.nan_color == "fuchsia"

    def test_round_trip_through_file(self, tmp_path):
        settings = view_settings_from_dict(HOST_PAYLOAD)
        path = tmp_path / "view.json"
        save_settings(settings, path)
        assert load_settings(path) == settings
        assert view_settings_to_dict(settings)["gamma"] == {"in": 2.2, "out": 1.0}

    def test_load_rejects_non_object(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError):
            load_settings(path)

    @pytest.mark.parametrize(
        "kwargs",
        [{"nan_color": "teal"}, {"scale_24bit_factor": 0.0}, {"scale_24bit_factor": float("nan")}],
    )
    def test_invalid_view_settings(self, kwargs):
        with pytest.raises(ValueError):
            ViewSettings(**kwargs)

    @pytest.mark.parametrize("kwargs", [{"nan_color": (0, 0, 300)}, {"type_max": 0.0}])
    def test_invalid_render_options(self, kwargs):
        with pytest.raises(ValueError):
            RenderOptions(**kwargs)


class TestDiffSettings:
    """Parameter-only versus structural updates."""

    def test_parameters_only(self):
        old = ViewSettings()
        new = old.with_normalization(auto_normalize=True).with_tone(exposure_stops=1.0)
        change = diff_settings(old, new)
        assert change.parameters_only
        assert not change.structural
        assert not change.masks_changed

    @pytest.mark.parametrize(
        "new",
        [
            ViewSettings(rgb_as_24bit_grayscale=True),
            ViewSettings(scale_24bit_factor=10.0),
            ViewSettings().with_normalization(normalized_float_mode=True),
        ],
    )
    def test_structural(self, new):
        change = diff_settings(ViewSettings(), new)
        assert change.structural
        assert not change.parameters_only

    def test_masks_changed(self):
        change = diff_settings(ViewSettings(), ViewSettings(mask_filters=(MaskFilter("m.tif"),)))
        assert change.masks_changed
        assert not change.parameters_only


class TestMaskFilters:
    """Threshold masking."""

    def test_apply_mask_filter_higher_and_lower(self):
        samples = np.array([1, 2, 3, 4], dtype=np.uint8)
        mask = np.array([0.0, 0.6, 0.4, 1.0])
        higher = apply_mask_filter(samples, mask, 0.5, filter_higher=True)
        lower = apply_mask_filter(samples, mask, 0.5, filter_higher=False)
        np.testing.assert_array_equal(np.isnan(higher), [False, True, False, True])
        np.testing.assert_array_equal(np.isnan(lower), [True, False, True, False])
        assert higher.dtype == np.float32

    def test_every_channel_of_hidden_pixel(self):
        samples = np.arange(6, dtype=np.float32)
        out = apply_mask_filter(samples, np.array([1.0, 0.0]), 0.5, True, channels=3)
        assert np.isnan(out[:3]).all()
        np.testing.assert_array_equal(out[3:], [3.0, 4.0, 5.0])

    def test_threshold_is_strict(self):
        out = apply_mask_filter(np.ones(1), np.array([0.5]), 0.5, True)
        assert not np.isnan(out).any()

    def test_apply_mask_filters_skips_disabled_and_mismatched(self):
        image = make_buffer(np.array([[10, 20]], dtype=np.uint16))
        good = make_buffer(np.array([[1.0, 0.0]], dtype=np.float32))
        wrong_size = make_buffer(np.ones((3, 3), dtype=np.float32))

        assert apply_mask_filters(image, [(MaskFilter("a", enabled=False), good)]) is image
        assert apply_mask_filters(image, [(MaskFilter("b"), wrong_size)]) is image

        masked = apply_mask_filters(image, [(MaskFilter("c"), good)])
        assert masked.element_kind == ElementKind.U16
        assert not masked.is_float
        assert np.isnan(masked.samples[0])
        assert masked.samples[1] == 20.0
