import pytest

from codebox.worker.guest import ConsoleSink, GuestProgram, format_value


async def run(code, context=None, proxies=None, handler_names=()):
    console = ConsoleSink()
    program = GuestProgram(code, handler_names)
    result = await program.run(console, context or {}, proxies or {})
    return result, console.snapshot()


@pytest.mark.asyncio
async def test_top_level_return():
    assert await run("return 1 + 2") == (3, [])


@pytest.mark.asyncio
async def test_no_return_yields_none():
    assert await run("x = 1") == (None, [])
    assert await run("") == (None, [])


@pytest.mark.asyncio
async def test_indented_multiline_snippet_is_dedented():
    code = """
        total = 0
        for n in range(4):
            total += n
        console.log("total", total)
        return total
    """
    assert await run(code) == (6, ["total 6"])


@pytest.mark.asyncio
async def test_console_levels_and_print():
    code = """
console.log("plain")
console.info("info")
console.warn("careful")
console.error("bad")
console.debug("details")
print("a", "b", sep="-")
"""
    _, logs = await run(code)
    assert logs == ["plain", "INFO: info", "WARN: careful", "ERROR: bad", "DEBUG: details", "a-b"]


@pytest.mark.asyncio
async def test_console_formats_containers_as_json():
    _, logs = await run('console.log("data", {"a": 1})')
    assert logs == ['data {\n  "a": 1\n}']


def test_format_value():
    assert format_value("text") == "text"
    assert format_value(3.5) == "3.5"
    assert format_value([1, 2]) == "[\n  1,\n  2\n]"
    assert format_value(None) == "None"


@pytest.mark.asyncio
async def test_context_is_read_only_mapping_when_proxied():
    from types import MappingProxyType

    console = ConsoleSink()
    program = GuestProgram("context['x'] = 1")
    with pytest.raises(TypeError):
        await program.run(console, MappingProxyType({}), {})
    assert (await run("return context['n'] * 2", {"n": 21}))[0] == 42


@pytest.mark.asyncio
async def test_handler_proxies_are_bound_by_name():
    calls = []

    async def double(n):
        calls.append(n)
        return n * 2

    result, _ = await run("return await double(21)", proxies={"double": double}, handler_names=["double"])
    assert result == 42
    assert calls == [21]


@pytest.mark.asyncio
async def test_undeclared_name_raises_name_error():
    with pytest.raises(NameError):
        await run("return await double(1)")


@pytest.mark.asyncio
async def test_runs_do_not_share_globals():
    program = GuestProgram("global leaked\nif 'leaked' in globals():\n    return 'seen'\nleaked = 1\nreturn 'fresh'")
    assert await program.run(ConsoleSink(), {}, {}) == "fresh"
    assert await program.run(ConsoleSink(), {}, {}) == "fresh"


def test_syntax_error_raised_at_compile_time():
    with pytest.raises(SyntaxError):
        GuestProgram("return (")


def test_top_level_yield_rejected():
    program = GuestProgram("yield 1")
    with pytest.raises(SyntaxError, match="yield"):
        program._load(ConsoleSink())


@pytest.mark.asyncio
async def test_guest_exception_propagates():
    with pytest.raises(ValueError, match="bad input"):
        await run("raise ValueError('bad input')")
