# src/rasterpyramid/metadata/__init__.py
#
# Copyright (c) The rasterpyramid project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The metadata subpackage describes produced tile pyramids as XML documents and
converts legacy flat descriptors into that form.
"""
# Dataset documents
from .document import (
    MetadataNode,
    DatasetMetadataDocument,
    build_document,
    read_document,
    open_document,
    find_metadata_documents,
    EARTH_ELEVATION_MIN,
    EARTH_ELEVATION_MAX
)

# Legacy descriptors
from .legacy import (
    LEGACY_PREFIX,
    LEGACY_FIELDS,
    convert_legacy_descriptor,
    read_legacy_descriptor
)

__all__ = [
    # Document
    "MetadataNode",
    "DatasetMetadataDocument",
    "build_document",
    "read_document",
    "open_document",
    "find_metadata_documents",
    "EARTH_ELEVATION_MIN",
    "EARTH_ELEVATION_MAX",

    # Legacy
    "LEGACY_PREFIX",
    "LEGACY_FIELDS",
    "convert_legacy_descriptor",
    "read_legacy_descriptor"
]
