"""
Module to validate the values in a loaded config against a parallel
validation config
"""

# Standard
from typing import Any, Dict, List, Optional, Type, Union
import builtins

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get  # pylint: disable=cyclic-import

log = alog.use_channel("CONFG")


################################################################################
## Public ######################################################################
################################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation rules

    Returns:
        invalid_params:  List[str]
            Nested keys for all parameters that fail validation
    """
    invalid_params = []
    for key, param in _parse_validation_config(validation_config).items():
        value = nested_get(config, key)
        if not param.validate(value):
            log.warning("Found invalid config key [%s]: %s", key, value)
            invalid_params.append(key)
    return invalid_params


################################################################################
## Implementation ##############################################################
################################################################################

# pylint: disable=too-few-public-methods

_PARAMETER_TYPES: Dict[str, Type["_Parameter"]] = {}


def _parameter_type(type_key: str):
    """Class decorator registering a parameter class under its yaml type key"""

    def decorator(cls):
        _PARAMETER_TYPES[type_key] = cls
        return cls

    return decorator


class _Parameter:
    """A single validated parameter. Children set VALID_TYPES and may override
    _check to add value constraints.
    """

    VALID_TYPES = ()

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Check the type and then the value-specific constraints"""
        if value is None and self.optional:
            return True
        # bool is a subclass of int, so it only matches types that list it
        if isinstance(value, bool) and bool not in self.VALID_TYPES:
            log.debug2("Rejecting bool for %s", type(self).__name__)
            return False
        if not isinstance(value, self.VALID_TYPES):
            log.debug2("Invalid type <%s>", type(value))
            return False
        return self._check(value)

    def _check(self, value: Any) -> bool:  # pylint: disable=unused-argument
        return True


class _Bounded(_Parameter):
    """Shared min/max handling for numbers and for lengths"""

    def __init__(
        self,
        low: Optional[Union[int, float]] = None,
        high: Optional[Union[int, float]] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._low = low
        self._high = high

    def _in_bounds(self, measure: Union[int, float]) -> bool:
        return (self._low is None or measure >= self._low) and (
            self._high is None or measure <= self._high
        )


@_parameter_type("number")
class _NumberParameter(_Bounded):
    """Any int or float with optional inclusive bounds"""

    VALID_TYPES = (int, float)

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(low=min, high=max, **kwargs)

    def _check(self, value: Union[int, float]) -> bool:
        return self._in_bounds(value)


@_parameter_type("int")
class _IntParameter(_NumberParameter):
    VALID_TYPES = (int,)


@_parameter_type("float")
class _FloatParameter(_NumberParameter):
    VALID_TYPES = (float,)


@_parameter_type("bool")
class _BoolParameter(_Parameter):
    VALID_TYPES = (bool,)


@_parameter_type("str")
class _StrParameter(_Bounded):
    """A string with optional inclusive length bounds"""

    VALID_TYPES = (str,)

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(low=min_len, high=max_len, **kwargs)

    def _check(self, value: str) -> bool:
        return self._in_bounds(len(value))


@_parameter_type("list")
class _ListParameter(_StrParameter):
    """A list with optional length bounds and a builtin item type

    Kwargs:
        item_type:  Optional[str]
            Name of a builtin type (e.g. "str" or "dict") all items must have
    """

    VALID_TYPES = (list,)

    def __init__(self, *, item_type: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._item_type = None
        if item_type is not None:
            assert hasattr(builtins, item_type), f"Unsupported item_type: {item_type}"
            self._item_type = getattr(builtins, item_type)

    def _check(self, value: list) -> bool:
        return super()._check(value) and (
            self._item_type is None
            or all(isinstance(item, self._item_type) for item in value)
        )


@_parameter_type("enum")
class _EnumParameter(_Parameter):
    """A value that must be one of a fixed set of str or int values"""

    VALID_TYPES = (str, int, type(None))

    def __init__(self, *, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert isinstance(values, list) and values, "Must specify enum values"
        self.values = values

    def _check(self, value: Union[str, int, None]) -> bool:
        return value in self.values


# pylint: enable=too-few-public-methods


def _construct_parameter(param_args: Dict[str, Any]) -> Optional[_Parameter]:
    """Build a parameter from the args in the validation file. Unknown type
    keys return None so that the dict is treated as a nested section.
    """
    param_args = dict(param_args)
    type_key = param_args.pop("type", None)
    if not isinstance(type_key, str):
        return None
    param_class = _PARAMETER_TYPES.get(type_key)
    if param_class is None:
        return None
    return param_class(**param_args)


def _parse_validation_config(
    validation_config: aconfig.Config,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, _Parameter]:
    """Flatten the validation config into nested keys mapped to parameters"""
    parsed = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        param = _construct_parameter(val) if "type" in val else None
        if param is not None:
            log.debug3("Found parameter at %s", nested_key)
            parsed[nested_key] = param
        else:
            log.debug3("Recursing into %s", nested_key)
            parsed.update(_parse_validation_config(val, key_parts))
    return parsed
