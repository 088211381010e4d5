"""Shape helpers: conversion to tf.TensorShape and static shape realization."""

from typing import List, Sequence, Tuple

import numpy as np
import tensorflow.compat.v1 as tf

DEFAULT_SAMPLES = (1, 3)


def to_tensor_shape(shape) -> tf.TensorShape:
    """``None`` is an unknown rank; ``None`` (or -1) entries are dynamic dims."""
    if shape is None:
        return tf.TensorShape(None)
    if isinstance(shape, tf.TensorShape):
        return shape
    return tf.TensorShape([None if dim is None or dim < 0 else int(dim) for dim in shape])


def shape_size(shape: Sequence[int]) -> int:
    """Number of elements of a static shape; 1 for a scalar shape."""
    return int(np.prod(list(shape), dtype=np.int64))


def shape_to_str(shape) -> str:
    shape = to_tensor_shape(shape)
    if shape.rank is None:
        return "[...]"
    return "[" + ",".join("?" if dim is None else str(dim) for dim in shape.as_list()) + "]"


def realize_static_shapes(shape, samples: Sequence[int] = DEFAULT_SAMPLES) -> List[Tuple[int, ...]]:
    """
    Concrete shapes to execute a (partially) dynamic shape with.

    A static shape realizes to itself. Otherwise one shape is produced per
    sample value, with every dynamic dimension set to that value.

    Raises:
        ValueError: If the rank is unknown.
    """
    shape = to_tensor_shape(shape)
    if shape.rank is None:
        raise ValueError("Cannot realize a shape with dynamic rank")
    dims = shape.as_list()
    if all(dim is not None for dim in dims):
        return [tuple(dims)]

    realized: List[Tuple[int, ...]] = []
    for sample in samples:
        candidate = tuple(sample if dim is None else dim for dim in dims)
        if candidate not in realized:
            realized.append(candidate)
    return realized

