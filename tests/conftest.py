import json
import os
import sys

import pytest

# Add the parent directory to the path so we can import the project packages
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.settings import IndexConfig

OVERVIEW_MD = """---
title: Overview
sidebar: main
---
# Overview

Welcome to the voice platform.

## Setup

```bash
pip install voice-sdk
```

- Create an API key
- Configure voice settings

### Tables

| Field | Meaning |
| ----- | ------- |
| stability | How stable the voice is |

> Note: settings are per voice.
"""

MODELS_MD = """# Models

The VoiceSettingsResponseModel is returned when you fetch the settings of a voice.
"""

OPENAPI_SPEC = {
    "openapi": "3.0.0",
    "info": {"title": "Voice API", "version": "1.0.0"},
    "paths": {
        "/v1/voices/{voice_id}/settings": {
            "parameters": [{"name": "voice_id", "in": "path", "required": True}],
            "get": {
                "operationId": "get_voice_settings",
                "summary": "Get voice settings",
                "description": "Returns the settings of a specific voice.",
                "tags": ["voices"],
                "parameters": [
                    {"name": "voice_id", "in": "path", "required": True,
                     "description": "ID of the voice", "schema": {"type": "string"}}
                ],
                "responses": {
                    "200": {
                        "description": "Successful Response",
                        "content": {"application/json": {
                            "schema": {"$ref": "#/components/schemas/VoiceSettingsResponseModel"}}}
                    }
                }
            }
        },
        "/v1/voices/settings/default": {
            "get": {
                "operationId": "get_default_voice_settings",
                "summary": "Get default voice settings",
                "responses": {
                    "200": {
                        "description": "Successful Response",
                        "content": {"application/json": {
                            "schema": {"$ref": "#/components/schemas/VoiceSettingsResponseModel"}}}
                    }
                }
            }
        },
        "/v1/text-to-speech": {
            "post": {
                "operationId": "text_to_speech",
                "summary": "Convert text to speech",
                "requestBody": {
                    "content": {"application/json": {
                        "schema": {"$ref": "#/components/schemas/TextToSpeechRequest"}}}
                },
                "responses": {"200": {"description": "Audio stream"}}
            }
        }
    },
    "components": {
        "schemas": {
            "VoiceSettingsResponseModel": {
                "type": "object",
                "description": "Voice settings of a voice.",
                "properties": {
                    "stability": {"type": "number"},
                    "similarity_boost": {"type": "number"}
                }
            },
            "TextToSpeechRequest": {
                "type": "object",
                "title": "Text To Speech Request",
                "properties": {
                    "text": {"type": "string"},
                    "voice_settings": {"$ref": "#/components/schemas/VoiceSettingsResponseModel"}
                }
            },
            "Node": {
                "type": "object",
                "description": "Tree node",
                "properties": {
                    "children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}}
                }
            }
        }
    }
}

SWAGGER_YAML = """swagger: "2.0"
info:
  title: Legacy API
  version: "0.1"
paths:
  /history:
    get:
      operationId: get_history
      summary: List generated audio history
      responses:
        "200":
          description: History page
          schema:
            $ref: "#/definitions/HistoryPage"
definitions:
  HistoryPage:
    type: object
    properties:
      items:
        type: array
        items:
          type: string
"""


def write_corpus(root):
    """Write a small documentation corpus under ``root``."""
    (root / "guides").mkdir(parents=True)
    (root / "api").mkdir()
    (root / "legacy").mkdir()
    (root / "node_modules" / "pkg").mkdir(parents=True)

    (root / "guides" / "overview.md").write_text(OVERVIEW_MD, encoding="utf-8")
    (root / "a_models.mdx").write_text(MODELS_MD, encoding="utf-8")
    (root / "api" / "openapi.json").write_text(json.dumps(OPENAPI_SPEC, indent=2), encoding="utf-8")
    (root / "legacy" / "swagger.yaml").write_text(SWAGGER_YAML, encoding="utf-8")
    (root / "api" / "openapi-broken.json").write_text("{ not json", encoding="utf-8")
    (root / "node_modules" / "pkg" / "openapi.json").write_text(json.dumps(OPENAPI_SPEC), encoding="utf-8")
    (root / "node_modules" / "pkg" / "README.md").write_text("# Vendored\n\nIgnore me.\n", encoding="utf-8")
    return root


@pytest.fixture
def corpus(tmp_path):
    return write_corpus(tmp_path / "docs")


@pytest.fixture
def config(tmp_path, corpus):
    return IndexConfig(docs_root=corpus, data_dir=tmp_path / "data")


@pytest.fixture
def indexed_config(config):
    """Configuration whose artifacts have been built from the sample corpus."""
    from pipelines.ingest import run_ingestion
    run_ingestion(config)
    return config


@pytest.fixture
def engine(indexed_config):
    from indexer.query_engine import QueryEngine
    return QueryEngine(indexed_config)
