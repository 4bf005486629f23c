# Copyright (c) 2025 Efstratios Goudelis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.


class UnknownParameterError(Exception):

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message  # Additional storage for convenience

    def __str__(self):
        base_str = f"UnknownParameterError: {self.message}"
        return base_str


class WrongChannelError(Exception):

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        base_str = f"WrongChannelError: {self.message}"
        return base_str


class ChannelNotConnectedError(Exception):

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        base_str = f"ChannelNotConnectedError: {self.message}"
        return base_str


class RecordDecodeError(Exception):

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        base_str = f"RecordDecodeError: {self.message}"
        return base_str


class PlanNotFoundError(Exception):

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        base_str = f"PlanNotFoundError: {self.message}"
        return base_str
