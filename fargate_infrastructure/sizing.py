"""Valid Fargate task sizes.

Fargate only accepts fixed CPU/memory pairs; anything else is rejected by
ECS when the task definition is registered.
"""

from .errors import InvalidSizingError

FARGATE_MEMORY_OPTIONS = {
    256: (512, 1024, 2048),
    512: tuple(range(1024, 4096 + 1, 1024)),
    1024: tuple(range(2048, 8192 + 1, 1024)),
    2048: tuple(range(4096, 16384 + 1, 1024)),
    4096: tuple(range(8192, 30720 + 1, 1024)),
    8192: tuple(range(16384, 61440 + 1, 4096)),
    16384: tuple(range(32768, 122880 + 1, 8192)),
}


def is_valid_combination(cpu: int, memory_mib: int) -> bool:
    return memory_mib in FARGATE_MEMORY_OPTIONS.get(cpu, ())


def validate_combination(cpu: int, memory_mib: int) -> None:
    if cpu not in FARGATE_MEMORY_OPTIONS:
        valid_cpu = ", ".join(str(c) for c in FARGATE_MEMORY_OPTIONS)
        raise InvalidSizingError(
            cpu, memory_mib,
            f"cpu={cpu} is not a Fargate CPU value (valid: {valid_cpu})")

    options = FARGATE_MEMORY_OPTIONS[cpu]
    if memory_mib not in options:
        valid_memory = ", ".join(str(m) for m in options)
        raise InvalidSizingError(
            cpu, memory_mib,
            f"memory_mib={memory_mib} is not valid for cpu={cpu} (valid: {valid_memory})")
