import pytest

from crosslister.adapters.selection import ensure_path_selected, ensure_selected, matches_path, optional_step
from crosslister.automation.driver import PageDriver
from crosslister.automation.timing import ExecutionMode, Timing
from crosslister.core.errors import ElementNotFound, NetworkError, ValidationRejected

from tests.fakes import FakeElement, FakePage


def _driver(page):
    return PageDriver(page, mode=ExecutionMode.BACKGROUND, timing=Timing(element_timeout_ms=200))


def _dropdown(page, options, current):
    opener = FakeElement(text=current)
    page.add(".current", opener)
    page.add(".open", opener)

    els = []
    for label in options:
        el = FakeElement(text=label)

        def _pick(el=el, label=label):
            opener.text = label

        el.on_click = _pick
        els.append(el)
    page.add(".option", *els)
    return opener, els


@pytest.mark.asyncio
async def test_selecting_twice_is_a_no_op_the_second_time():
    page = FakePage()
    opener, (small, medium) = _dropdown(page, ["Small", "Medium"], current="Select size")
    d = _driver(page)

    kwargs = dict(field="size", label="Medium", open_selector=".open", option_selector=".option", current_selector=".current")
    assert await ensure_selected(d, **kwargs) is True
    assert await ensure_selected(d, **kwargs) is False

    assert opener.clicks == 1
    assert medium.clicks == 1
    assert small.clicks == 0


@pytest.mark.asyncio
async def test_selection_matches_case_and_whitespace_insensitively():
    page = FakePage()
    opener, _ = _dropdown(page, ["Like new"], current="  like   NEW ")
    d = _driver(page)

    made = await ensure_selected(d, field="condition", label="Like New", open_selector=".open", option_selector=".option", current_selector=".current")
    assert made is False
    assert opener.clicks == 0


@pytest.mark.asyncio
async def test_missing_option_is_validation_rejected():
    page = FakePage()
    _dropdown(page, ["Small"], current="")
    with pytest.raises(ValidationRejected) as exc:
        await ensure_selected(_driver(page), field="size", label="XXL", open_selector=".open", option_selector=".option")
    assert exc.value.field == "size"


def test_matches_path_requires_segments_in_order():
    assert matches_path("Women > Tops > Blouses", ["Women", "Blouses"])
    assert not matches_path("Women > Tops > Blouses", ["Blouses", "Women"])
    assert not matches_path(None, ["Women"])
    assert not matches_path("Women", [])


@pytest.mark.asyncio
async def test_path_already_selected_does_nothing():
    page = FakePage()
    opener, _ = _dropdown(page, ["Women"], current="Women  Tops")
    d = _driver(page)

    made = await ensure_path_selected(d, field="category", path=["Women", "Tops"], open_selector=".open", option_selector=".option", current_selector=".current")
    assert made is False
    assert opener.clicks == 0


@pytest.mark.asyncio
async def test_path_stops_at_deepest_available_level(recorded_sleeps):
    page = FakePage()
    opener, (women, tops) = _dropdown(page, ["Women", "Tops"], current="Category")
    d = _driver(page)

    made = await ensure_path_selected(d, field="category", path=["Women", "Tops", "Blouses"], open_selector=".open", option_selector=".option", current_selector=".current")
    assert made is True
    assert women.clicks == 1
    assert tops.clicks == 1
    # the round-trip between levels is kept even in background mode
    assert any(s >= 0.3 for s in recorded_sleeps)


@pytest.mark.asyncio
async def test_optional_step_swallows_form_errors_only():
    warnings = []

    async def missing():
        raise ElementNotFound("#brand", field="brand")

    assert await optional_step("brand", missing(), warn=warnings.append) is False
    assert warnings and "brand" in warnings[0]

    async def offline():
        raise NetworkError("connection reset")

    with pytest.raises(NetworkError):
        await optional_step("brand", offline())
