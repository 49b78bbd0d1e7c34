"""Detection of the accelerator library and CPU vector extensions."""

from __future__ import annotations

import platform
from dataclasses import dataclass

from modelkit import output

_X86_64_NAMES = ("x86_64", "amd64")


@dataclass
class GPUInfo:
    """The inference library to use and its variant, if any."""

    library: str
    variant: str = ""


def _cpu_flags() -> set[str]:
    try:
        with open("/proc/cpuinfo", encoding="utf-8", errors="replace") as handle:
            text = handle.read()
    except OSError:
        return set()
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == "flags":
            return set(value.split())
    return set()


def get_cpu_variant() -> str:
    """Return 'avx2' or 'avx' for the best vector extension found, else ''."""
    flags = _cpu_flags()
    if "avx2" in flags:
        output.debug("CPU has AVX2")
        return "avx2"
    if "avx" in flags:
        output.debug("CPU has AVX")
        return "avx"
    output.debug("CPU does not have vector extensions")
    return ""


def get_gpu_info() -> GPUInfo:
    """Return the CPU library on x86-64 machines and Metal elsewhere."""
    if platform.machine().lower() in _X86_64_NAMES:
        return GPUInfo(library="cpu", variant=get_cpu_variant())
    return GPUInfo(library="metal")