"""Progress bars for packing, unpacking and copying blobs."""

from __future__ import annotations

import sys
import tarfile
from dataclasses import dataclass
from typing import Any, Callable

from tqdm import tqdm

from modelkit import output
from modelkit.output import ProgressLogger, format_bytes

_NCOLS = 100


@dataclass(frozen=True)
class BarStyle:
    """Characters that draw a progress bar."""

    lbound: str
    filler: str
    tip: tuple[str, ...]
    padding: str
    rbound: str

    @property
    def ascii(self) -> str:
        """Characters for tqdm: the empty cell followed by the full cell."""
        return self.padding[0] + self.filler[0]


_PLAIN = BarStyle("|", "=", (">",), "-", "|")
_STYLES = {
    "plain": _PLAIN,
    "fancy": BarStyle("|", "░", ("░",), "·", "|"),
    "cherry": BarStyle("| ", "· ", ("(<", "(-"), "• ", "🍒  "),
}


def bar_style() -> BarStyle:
    """Return the bar style chosen with set_progress_bars."""
    return _STYLES.get(output._progress_style_name(), _PLAIN)


def _new_bar(total: int, desc: str, *, leave: bool = True, initial: int = 0, in_bytes: bool = True) -> tqdm:
    style = bar_style()
    if in_bytes:
        right = "{n_fmt}B / {total_fmt}B | {rate_fmt}"
    else:
        right = "{percentage:3.0f}%"
    return tqdm(
        total=total,
        initial=initial,
        desc=desc,
        file=sys.stdout,
        ncols=_NCOLS,
        ascii=style.ascii,
        bar_format=f"{{desc}} {style.lbound}{{bar}}{style.rbound} {right}",
        unit="B" if in_bytes else "it",
        unit_scale=in_bytes,
        unit_divisor=1024,
        leave=leave,
    )


class _TqdmWriter:
    """A text sink that prints lines above any bars being drawn."""

    def write(self, text: str) -> int:
        tqdm.write(text[:-1] if text.endswith("\n") else text, file=sys.stdout)
        return len(text)


class _ProxyReader:
    def __init__(self, stream: Any, callback: Callable[[int], Any]) -> None:
        self._stream = stream
        self._callback = callback

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self._callback(len(data))
        return data

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> "_ProxyReader":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)


class _ProxyWriter:
    def __init__(self, stream: Any, callback: Callable[[int], Any]) -> None:
        self._stream = stream
        self._callback = callback

    def write(self, data: bytes) -> int:
        written = self._stream.write(data)
        self._callback(len(data) if written is None else written)
        return written

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stream, name)


class ProgressBar:
    """A simple counting bar; does nothing when progress bars are disabled."""

    def __init__(self, bar: tqdm | None = None, done_msg: str = "") -> None:
        self.bar = bar
        self.done_msg = done_msg

    def increment(self) -> None:
        if self.bar is not None:
            self.bar.update(1)

    def done(self) -> None:
        if self.bar is None:
            return
        if self.bar.total is not None and self.bar.n >= self.bar.total:
            self.bar.bar_format = "{desc}"
            self.bar.set_description_str(self.done_msg, refresh=False)
        self.bar.close()

    def __enter__(self) -> "ProgressBar":
        return self

    def __exit__(self, *exc: object) -> None:
        self.done()


def generic_progress_bar(name: str, done_msg: str, total: int) -> ProgressBar:
    if not output.progress_enabled():
        return ProgressBar()
    return ProgressBar(_new_bar(total, name, in_bytes=False), done_msg)


def wrap_reader(size: int, stream: Any) -> tuple[Any, ProgressLogger]:
    """Wrap a binary stream so that reading from it fills an 'Unpacking' bar."""
    if not output.progress_enabled():
        return stream, ProgressLogger()
    bar = _new_bar(size, "Unpacking", leave=False)
    return _ProxyReader(stream, bar.update), ProgressLogger(_TqdmWriter(), bar.close)


class ProgressTar:
    """Adds files to a tar archive while advancing a 'Packing' bar."""

    def __init__(self, tar: tarfile.TarFile, bar: tqdm | None = None) -> None:
        self.tar = tar
        self.bar = bar

    def addfile(self, tarinfo: tarfile.TarInfo, fileobj: Any = None) -> None:
        if fileobj is not None and self.bar is not None:
            fileobj = _ProxyReader(fileobj, self.bar.update)
        self.tar.addfile(tarinfo, fileobj)

    def close(self) -> None:
        """Finish the bar; the archive itself is left open for the caller."""
        if self.bar is not None:
            self.bar.close()


def tar_progress(total: int, tar: tarfile.TarFile) -> tuple[ProgressTar, ProgressLogger]:
    if not output.progress_enabled():
        return ProgressTar(tar), ProgressLogger()
    bar = _new_bar(total, "Packing", leave=False)
    return ProgressTar(tar, bar), ProgressLogger(_TqdmWriter(), bar.close)


class PullProgress(ProgressLogger):
    """Shows one bar per blob being downloaded."""

    def __init__(self, active: bool = False) -> None:
        self.active = active
        self.bars: list[tqdm] = []
        if active:
            super().__init__(_TqdmWriter(), self.done)
        else:
            super().__init__()

    def proxy_writer(self, stream: Any, digest: str, size: int, offset: int) -> Any:
        """Wrap stream so that writes advance a bar that starts at offset."""
        if not output.progress_enabled() or not self.active:
            return stream
        bar = _new_bar(size, f"Copying {digest[:8]}", initial=offset)
        self.bars.append(bar)
        return _ProxyWriter(stream, bar.update)

    def done(self) -> None:
        for bar in self.bars:
            if bar.total is not None and bar.n >= bar.total and not bar.disable:
                bar.bar_format = f"{{desc}} {format_bytes(int(bar.total)):<9} | done"
            bar.close()


def new_pull_progress() -> PullProgress:
    return PullProgress(active=output.progress_enabled())