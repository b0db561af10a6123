# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Any, Dict

import structlog

from ..errors import ConfigurationError

logger = structlog.get_logger(__name__)


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR:?message} and the $$ escape.
    """
    # Group 1: $$ escape
    # Group 2: bare $VAR name
    # Group 3: braced VAR name
    # Group 4: modifier, one of :- - :+ + :? ?
    # Group 5: default, alternative value or error message
    PATTERN = re.compile(
        r'\$(?:(\$)|([A-Za-z_][A-Za-z0-9_]*)|\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+?])([^}]*))?\})'
    )

    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        Unset variables without a modifier resolve to an empty string, as
        compose does, and a warning is logged.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises ConfigurationError: If a ${VAR:?message} variable is unset or empty.
        """
        def replace(match):
            if match.group(1):
                return '$'

            var_name = match.group(2) or match.group(3)
            modifier = match.group(4)
            alt_value = match.group(5) or ''
            value = context.get(var_name)

            if modifier == ':-':
                return value if value else alt_value
            if modifier == '-':
                return value if value is not None else alt_value
            if modifier == ':+':
                return alt_value if value else ''
            if modifier == '+':
                return alt_value if value is not None else ''
            if modifier in (':?', '?'):
                missing = not value if modifier == ':?' else value is None
                if missing:
                    raise ConfigurationError(
                        f"required variable {var_name} is missing a value: {alt_value}".rstrip(': ')
                    )
                return value

            if value is None:
                logger.warning("variable_not_set", variable=var_name)
                return ''
            return value

        return EnvironmentInterpolator.PATTERN.sub(replace, template)

    @staticmethod
    def interpolate_values(node: Any, context: Dict[str, str]) -> Any:
        """
        Interpolates every string value of a loaded YAML document.

        Mapping keys and non-string scalars are left as they are.

        :param node: A mapping, list or scalar from ``yaml.safe_load``.
        :param context: The environment variables context.
        :return: A copy of the node with its strings interpolated.
        """
        if isinstance(node, str):
            return EnvironmentInterpolator.interpolate(node, context)
        if isinstance(node, dict):
            return {key: EnvironmentInterpolator.interpolate_values(value, context)
                    for key, value in node.items()}
        if isinstance(node, list):
            return [EnvironmentInterpolator.interpolate_values(value, context) for value in node]
        return node
