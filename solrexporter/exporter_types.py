#
# Copyright (C) 2022 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
import configargparse
import humanfriendly


def positive_integer(value_str: str) -> int:
    value = int(value_str)
    if value <= 0:
        raise configargparse.ArgumentTypeError("invalid positive integer value: {!r}".format(value))
    return value


def port_number(value_str: str) -> int:
    value = int(value_str)
    if not 0 <= value <= 65535:
        raise configargparse.ArgumentTypeError("invalid port number: {!r}".format(value))
    return value


def positive_timespan(value_str: str) -> float:
    """
    Seconds, or a human friendly timespan such as "30s" or "2m".
    """
    try:
        value = humanfriendly.parse_timespan(value_str)
    except humanfriendly.InvalidTimespan as e:
        raise configargparse.ArgumentTypeError(str(e)) from e
    if value <= 0:
        raise configargparse.ArgumentTypeError("invalid positive timespan: {!r}".format(value_str))
    return value
