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
Log sinks: where progress text goes.

A sink is any callable taking one line of text. The CLI passes
``click.echo``; library code defaults to ``print``; tests use ``null_sink``.
"""
from typing import Callable

LogSink = Callable[[str], None]


def null_sink(message: str) -> None:
    """Discards everything."""


def prefixed(sink: LogSink, prefix: str, width: int = 15) -> LogSink:
    """
    Wraps a sink so that each line is tagged with a padded prefix,
    e.g. ``PostgreSQL      | ready to accept connections``.
    """
    def emit(message: str) -> None:
        sink(f"{prefix:{width}} | {message}")
    return emit
