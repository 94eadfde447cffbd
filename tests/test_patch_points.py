import asyncio

import pytest

from faultpack.capture.hooks import PatchedCall, active_patch_points, patch_point, subscribe


class _Uploader:
    def upload(self, name: str) -> str:
        if name == "broken":
            raise RuntimeError("upload failed")
        return f"uploaded:{name}"

    async def upload_async(self, name: str) -> str:
        if name == "broken":
            raise RuntimeError("async upload failed")
        return f"uploaded:{name}"


class _ChildUploader(_Uploader):
    pass


def test_two_subscribers_share_one_patch_and_restore_in_any_order() -> None:
    original = _Uploader.__dict__["upload"]
    first_calls: list[PatchedCall] = []
    second_calls: list[PatchedCall] = []

    first = subscribe(_Uploader, "upload", first_calls.append)
    second = subscribe(_Uploader, "upload", second_calls.append)
    patched = _Uploader.__dict__["upload"]

    assert patched is not original
    assert _Uploader().upload("photo") == "uploaded:photo"
    assert [call.result for call in first_calls] == ["uploaded:photo"]
    assert [call.result for call in second_calls] == ["uploaded:photo"]

    first.cancel()
    assert _Uploader.__dict__["upload"] is patched
    _Uploader().upload("again")
    assert len(first_calls) == 1
    assert len(second_calls) == 2

    second.cancel()
    assert _Uploader.__dict__["upload"] is original


def test_subscribers_can_leave_in_reverse_order() -> None:
    original = _Uploader.__dict__["upload"]

    first = subscribe(_Uploader, "upload", lambda _call: None)
    second = subscribe(_Uploader, "upload", lambda _call: None)
    second.cancel()
    first.cancel()

    assert _Uploader.__dict__["upload"] is original
    assert all(point.owner is not _Uploader for point in active_patch_points())


def test_cancel_is_idempotent() -> None:
    original = _Uploader.__dict__["upload"]
    subscription = subscribe(_Uploader, "upload", lambda _call: None)

    subscription.cancel()
    subscription.cancel()

    assert _Uploader.__dict__["upload"] is original


def test_errors_reach_observers_and_are_reraised() -> None:
    calls: list[PatchedCall] = []
    subscription = subscribe(_Uploader, "upload", calls.append)
    try:
        with pytest.raises(RuntimeError, match="upload failed"):
            _Uploader().upload("broken")
    finally:
        subscription.cancel()

    assert len(calls) == 1
    assert isinstance(calls[0].error, RuntimeError)
    assert calls[0].args[1:] == ("broken",)


def test_coroutine_methods_are_wrapped_with_async_wrapper() -> None:
    calls: list[PatchedCall] = []
    subscription = subscribe(_Uploader, "upload_async", calls.append)
    try:
        assert asyncio.run(_Uploader().upload_async("photo")) == "uploaded:photo"
        with pytest.raises(RuntimeError, match="async upload failed"):
            asyncio.run(_Uploader().upload_async("broken"))
    finally:
        subscription.cancel()

    assert calls[0].result == "uploaded:photo"
    assert isinstance(calls[1].error, RuntimeError)


def test_inherited_attribute_is_removed_again_on_uninstall() -> None:
    subscription = subscribe(_ChildUploader, "upload", lambda _call: None)
    assert "upload" in vars(_ChildUploader)

    subscription.cancel()

    assert "upload" not in vars(_ChildUploader)
    assert _ChildUploader().upload("photo") == "uploaded:photo"


def test_foreign_patch_on_top_is_left_in_place() -> None:
    original = _Uploader.__dict__["upload"]
    calls: list[PatchedCall] = []
    subscription = subscribe(_Uploader, "upload", calls.append)
    ours = _Uploader.__dict__["upload"]

    def foreign(self: _Uploader, name: str) -> str:
        return ours(self, name).upper()

    _Uploader.upload = foreign  # type: ignore[method-assign]
    try:
        subscription.cancel()
        assert _Uploader.__dict__["upload"] is foreign
        assert _Uploader().upload("photo") == "UPLOADED:PHOTO"
        assert calls == []
    finally:
        _Uploader.upload = original  # type: ignore[method-assign]


def test_patch_point_rejects_missing_attribute() -> None:
    with pytest.raises(AttributeError, match="no attribute 'download'"):
        patch_point(_Uploader, "download")


def test_resubscribe_after_full_release_installs_a_fresh_patch() -> None:
    original = _Uploader.__dict__["upload"]
    calls: list[PatchedCall] = []

    subscribe(_Uploader, "upload", calls.append).cancel()
    subscription = subscribe(_Uploader, "upload", calls.append)
    try:
        _Uploader().upload("photo")
    finally:
        subscription.cancel()

    assert len(calls) == 1
    assert _Uploader.__dict__["upload"] is original
