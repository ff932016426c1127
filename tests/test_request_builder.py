import pytest
from pydantic import ValidationError

from capabilities import CAPABILITIES, models_for
from config import MB
from request_builder import (
    FormError,
    build_edit_request,
    build_generate_request,
    build_request,
    build_variation_request,
)
from schemas import RequestOptions, UploadedAsset


def all_options_set(model):
    return RequestOptions(
        model=model, n=1, size="1024x1024", quality="standard", background="transparent",
        output_format="jpeg", output_compression=50, moderation="low",
        response_format="b64_json", style="natural", user="user-1"
    )


@pytest.mark.parametrize("model", models_for("generate"))
def test_generate_sends_only_supported_fields(model):
    caps = CAPABILITIES["generate"][model]
    request = build_generate_request(all_options_set(model), "a red ball")

    assert set(request.params) <= {"prompt", "model"} | set(caps.fields)
    assert request.params["model"] == model
    assert request.endpoint == "generate"
    assert request.files == {}


def test_style_only_for_dalle3():
    for model in models_for("generate"):
        request = build_generate_request(RequestOptions(model=model, style="natural"), "x")
        assert ("style" in request.params) == (model == "dall-e-3")


def test_gpt_image_fields_only_for_gpt_image():
    for model in models_for("generate"):
        request = build_generate_request(all_options_set(model), "x")
        for name in ("background", "output_format", "moderation"):
            assert (name in request.params) == (model == "gpt-image-1")
        assert ("response_format" in request.params) == (model != "gpt-image-1")


def test_quality_rules():
    def quality(model, value):
        return build_generate_request(RequestOptions(model=model, quality=value), "x").params.get("quality")

    assert quality("dall-e-2", "auto") is None
    assert quality("dall-e-2", "standard") == "standard"
    assert quality("dall-e-3", "auto") is None
    assert quality("dall-e-3", "hd") == "hd"
    assert quality("gpt-image-1", "high") == "high"
    # invalid for the model: silently left out
    assert quality("gpt-image-1", "hd") is None
    assert quality("dall-e-2", "hd") is None


def test_output_compression_only_for_lossy_formats():
    def params(**kwargs):
        return build_generate_request(RequestOptions(model="gpt-image-1", **kwargs), "x").params

    assert "output_compression" not in params(output_format="png", output_compression=50)
    assert "output_compression" not in params(output_format="jpeg", output_compression=100)
    assert params(output_format="jpeg", output_compression=80)["output_compression"] == 80
    assert params(output_format="webp", output_compression=0)["output_compression"] == 0


def test_user_is_trimmed_and_blank_user_omitted():
    request = build_generate_request(RequestOptions(user="  alice  "), "x")
    assert request.params["user"] == "alice"
    request = build_generate_request(RequestOptions(user="   "), "x")
    assert "user" not in request.params


def test_size_falls_back_to_model_default():
    request = build_generate_request(RequestOptions(model="dall-e-3", size="256x256"), "x")
    assert request.params["size"] == "1024x1024"
    request = build_generate_request(RequestOptions(model="dall-e-3", size="1792x1024"), "x")
    assert request.params["size"] == "1792x1024"


@pytest.mark.parametrize("prompt", ["", "   ", None])
def test_generate_requires_prompt(prompt):
    with pytest.raises(FormError, match="Please enter a prompt."):
        build_generate_request(RequestOptions(), prompt)


def test_prompt_length_limit_per_model():
    build_generate_request(RequestOptions(model="dall-e-3"), "x" * 4000)
    with pytest.raises(FormError, match="at most 1000 characters for dall-e-2"):
        build_generate_request(RequestOptions(model="dall-e-2"), "x" * 1001)


def test_generate_count_limits():
    with pytest.raises(FormError, match="between 1 and 1"):
        build_generate_request(RequestOptions(model="dall-e-3", n=2), "x")
    with pytest.raises(FormError, match="between 1 and 10"):
        build_generate_request(RequestOptions(model="dall-e-2", n=11), "x")
    assert build_generate_request(RequestOptions(model="gpt-image-1", n=3), "x").params["n"] == 3


@pytest.mark.parametrize("field, value", [("n", 0), ("n", -2), ("output_compression", 250), ("output_compression", -1)])
def test_numeric_options_out_of_range(field, value):
    with pytest.raises(ValidationError):
        RequestOptions(model="gpt-image-1", output_format="jpeg", **{field: value})


def test_compression_bounds_accepted():
    for value in (0, 100):
        RequestOptions(model="gpt-image-1", output_format="jpeg", output_compression=value)


def test_dalle2_quality_choices_include_default():
    caps = CAPABILITIES["generate"]["dall-e-2"]
    assert caps.qualities[0] == RequestOptions().quality == "auto"
    assert "standard" in caps.qualities
    assert "quality" not in build_generate_request(RequestOptions(model="dall-e-2"), "x").params


def test_unsupported_model():
    with pytest.raises(FormError, match="Unsupported model: dall-e-3"):
        build_edit_request(RequestOptions(model="dall-e-3"), "x", None)


def test_unknown_mode():
    with pytest.raises(FormError, match="Unknown mode"):
        build_request("upscale", RequestOptions(), "x")


def test_edit_requires_prompt_before_image():
    with pytest.raises(FormError, match="Please enter a prompt."):
        build_edit_request(RequestOptions(), "", None)
    with pytest.raises(FormError, match="Please upload an image to edit."):
        build_edit_request(RequestOptions(), "make it blue", None)


def test_edit_dalle2_params(png_asset):
    image = png_asset(32, 32)
    request = build_edit_request(RequestOptions(model="dall-e-2", size="512x512"), "hat", image)

    assert request.endpoint == "edit"
    assert request.params == {"prompt": "hat", "model": "dall-e-2", "size": "512x512", "response_format": "url"}
    assert request.files == {"image": image}


def test_edit_gpt_image_params(png_asset):
    image = png_asset(32, 32, filename="photo.webp", content_type="image/webp")
    options = RequestOptions(model="gpt-image-1", size="1536x1024", background="opaque", quality="auto")
    request = build_edit_request(options, "hat", image)

    assert request.params == {
        "prompt": "hat", "model": "gpt-image-1", "size": "1536x1024",
        "background": "opaque", "quality": "auto",
    }


def test_edit_image_type_per_model(png_asset):
    jpeg = png_asset(content_type="image/jpeg", filename="a.jpg")
    with pytest.raises(FormError, match="dall-e-2 requires a PNG image."):
        build_edit_request(RequestOptions(model="dall-e-2"), "x", jpeg)
    build_edit_request(RequestOptions(model="gpt-image-1"), "x", jpeg)

    gif = png_asset(content_type="image/gif", filename="a.gif")
    with pytest.raises(FormError, match="gpt-image-1 supports PNG, JPG, or WEBP images."):
        build_edit_request(RequestOptions(model="gpt-image-1"), "x", gif)


def test_edit_image_size_ceiling():
    big = UploadedAsset(filename="big.png", content_type="image/png", data=b"\0" * (4 * MB + 1))
    with pytest.raises(FormError, match="dall-e-2 image must be less than 4MB."):
        build_edit_request(RequestOptions(model="dall-e-2"), "x", big)


def test_edit_mask_checks(png_asset):
    image = png_asset(64, 64)
    with pytest.raises(FormError, match="Mask must be a PNG file."):
        build_edit_request(RequestOptions(), "x", image, png_asset(content_type="image/jpeg"))

    big_mask = UploadedAsset(filename="mask.png", content_type="image/png", data=b"\0" * (4 * MB + 1))
    with pytest.raises(FormError, match="Mask must be less than 4MB."):
        build_edit_request(RequestOptions(model="gpt-image-1"), "x", image, big_mask)

    with pytest.raises(FormError, match="same dimensions"):
        build_edit_request(RequestOptions(), "x", image, png_asset(32, 32))

    mask = png_asset(64, 64, filename="mask.png")
    request = build_edit_request(RequestOptions(), "x", image, mask)
    assert request.files == {"image": image, "mask": mask}


def test_variation_requires_image():
    with pytest.raises(FormError, match="Please upload a PNG image for variation."):
        build_variation_request(RequestOptions(), None)


def test_variation_rejects_non_png(png_asset):
    with pytest.raises(FormError, match="must be a PNG file"):
        build_variation_request(RequestOptions(), png_asset(content_type="image/jpeg"))


@pytest.mark.parametrize("width,height", [(64, 32), (32, 64), (100, 99), (1, 2), (513, 512)])
def test_variation_rejects_non_square(png_asset, width, height):
    with pytest.raises(FormError, match="must be square"):
        build_variation_request(RequestOptions(), png_asset(width, height))


def test_variation_rejects_unreadable_image():
    junk = UploadedAsset(filename="x.png", content_type="image/png", data=b"not an image")
    with pytest.raises(FormError, match="Could not read the uploaded image."):
        build_variation_request(RequestOptions(), junk)


def test_variation_count_limits(png_asset):
    with pytest.raises(FormError, match="Number of variations must be between 1 and 10."):
        build_variation_request(RequestOptions(n=11), png_asset())


def test_variation_params(png_asset):
    image = png_asset(48, 48)
    request = build_request("variation", RequestOptions(n=3, size="256x256"), image=image)

    assert request.endpoint == "variation"
    assert request.params == {"model": "dall-e-2", "n": 3, "size": "256x256", "response_format": "url"}
    assert request.files == {"image": image}


def test_as_kwargs_merges_files(png_asset):
    image = png_asset()
    request = build_edit_request(RequestOptions(), "x", image)
    kwargs = request.as_kwargs()
    assert kwargs["image"] == ("image.png", image.data, "image/png")
    assert kwargs["prompt"] == "x"
