import pytest

from streamsplice.callbacks import CallbackDriver, StreamCallbacks


class TestCallbackDriver:
    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self):
        calls = []

        async def on_token(token):
            calls.append(("token", token))

        driver = CallbackDriver(StreamCallbacks(
            on_start=lambda: calls.append(("start",)),
            on_token=on_token,
            on_completion=lambda text: calls.append(("completion", text)),
        ))
        await driver.start()
        await driver.token("a")
        await driver.completion("a")

        assert calls == [("start",), ("token", "a"), ("completion", "a")]

    @pytest.mark.asyncio
    async def test_final_fires_once(self):
        finals = []
        driver = CallbackDriver(StreamCallbacks(on_final=finals.append))

        await driver.final("first")
        await driver.final("second")

        assert finals == ["first"]

    @pytest.mark.asyncio
    async def test_final_fires_with_empty_text(self):
        finals = []
        driver = CallbackDriver(StreamCallbacks(on_final=finals.append))
        await driver.final("")
        assert finals == [""]

    @pytest.mark.asyncio
    async def test_missing_callbacks_are_skipped(self):
        driver = CallbackDriver()
        await driver.start()
        await driver.token("a")
        await driver.chunk({})
        await driver.completion("a")
        await driver.final("a")
        assert driver.on_function_call is None
