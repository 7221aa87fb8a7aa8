"""Jinja sources for the code generator, keyed by language and shape.

Context variables: ``description``, ``requirements`` (list of str),
``i`` (one indentation unit), ``comments`` (bool), ``class_name``.
"""

JS_EXPRESS = """\
{% if comments %}
// {{ description }}
{% endif %}
import express from 'express';

const app = express();
const port = process.env.PORT || 3000;

app.use(express.json());

app.get('/', (req, res) => {
{{ i }}res.json({ message: 'API is running' });
});
{% if requirements %}

{% for req in requirements %}
// Requirement: {{ req }}
{% endfor %}
{% endif %}

export const main = () => ({ status: 'success', data: null });

if (process.env.NODE_ENV !== 'test') {
{{ i }}app.listen(port, () => {
{{ i }}{{ i }}console.log(`Server running on port ${port}`);
{{ i }}});
}

export default app;
"""

JS_FUNCTIONAL = """\
{% if comments %}
// {{ description }}

/**
 * Main function implementing the required functionality
 */
{% endif %}
export const main = () => {
{% for req in requirements %}
{{ i }}// Requirement: {{ req }}
{% endfor %}
{{ i }}return {
{{ i }}{{ i }}status: 'success',
{{ i }}{{ i }}data: null
{{ i }}};
};

export const helper = {};
"""

JS_CLASS = """\
{% if comments %}
// {{ description }}
{% endif %}
class Implementation {
{% for req in requirements %}
{{ i }}// Requirement: {{ req }}
{% endfor %}
{{ i }}constructor() {
{{ i }}{{ i }}this.ready = true;
{{ i }}}

{{ i }}execute() {
{{ i }}{{ i }}return { status: 'success' };
{{ i }}}
}

export const main = () => new Implementation().execute();

export default Implementation;
"""

TS_FUNCTIONAL = """\
{% if comments %}
// {{ description }}
{% endif %}
export interface Result {
{{ i }}status: 'success' | 'error';
{{ i }}data: unknown;
}

export const main = (): Result => {
{% for req in requirements %}
{{ i }}// Requirement: {{ req }}
{% endfor %}
{{ i }}return { status: 'success', data: null };
};
"""

PY_FASTAPI = '''\
"""{{ description }}"""

from fastapi import FastAPI
from pydantic import BaseModel
import uvicorn

app = FastAPI(title={{ description | tojson }})


class Response(BaseModel):
    status: str
    data: dict | None = None


@app.get("/")
async def root():
    return {"message": "API is running"}


def main():
    return {"status": "success", "data": None}
{% if requirements %}

{% for req in requirements %}
# Requirement: {{ req }}
{% endfor %}
{% endif %}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
'''

PY_FUNCTIONAL = '''\
"""{{ description }}"""


def main():
{% if comments %}
    """Main function implementing the required functionality."""
{% endif %}
{% for req in requirements %}
    # Requirement: {{ req }}
{% endfor %}
    return {"status": "success", "data": None}


if __name__ == "__main__":
    print(main())
'''

PY_CLASS = '''\
"""{{ description }}"""


class Implementation:
{% if comments %}
    """Main implementation class."""

{% endif %}
    def __init__(self):
{% for req in requirements %}
        # Requirement: {{ req }}
{% endfor %}
        self.ready = True

    def execute(self):
        return {"status": "success"}


def main():
    return Implementation().execute()


if __name__ == "__main__":
    print(main())
'''

JAVA_CLASS = """\
{% if comments %}
/**
 * {{ description }}
 */
{% endif %}
public class {{ class_name }} {
{% for req in requirements %}
{{ i }}// Requirement: {{ req }}
{% endfor %}

{{ i }}public {{ class_name }}() {
{{ i }}}

{{ i }}public Result execute() {
{{ i }}{{ i }}return new Result("success", null);
{{ i }}}

{{ i }}public static class Result {
{{ i }}{{ i }}private final String status;
{{ i }}{{ i }}private final Object data;

{{ i }}{{ i }}public Result(String status, Object data) {
{{ i }}{{ i }}{{ i }}this.status = status;
{{ i }}{{ i }}{{ i }}this.data = data;
{{ i }}{{ i }}}

{{ i }}{{ i }}public String getStatus() { return status; }
{{ i }}{{ i }}public Object getData() { return data; }
{{ i }}}

{{ i }}public static void main(String[] args) {
{{ i }}{{ i }}Result result = new {{ class_name }}().execute();
{{ i }}{{ i }}System.out.println("Status: " + result.getStatus());
{{ i }}}
}
"""

SQL_SCRIPT = """\
-- {{ description }}
{% for req in requirements %}
-- Requirement: {{ req }}
{% endfor %}

CREATE TABLE IF NOT EXISTS example_table (
{{ i }}id SERIAL PRIMARY KEY,
{{ i }}name VARCHAR(255) NOT NULL,
{{ i }}created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
{{ i }}updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

SELECT * FROM example_table
WHERE created_at >= CURRENT_DATE - INTERVAL '7 days'
ORDER BY created_at DESC;
"""

JS_TESTS = """\
import { describe, test, expect } from 'vitest';
import { main } from './implementation';

describe('Implementation', () => {
{{ i }}test('executes successfully', () => {
{{ i }}{{ i }}const result = main();
{{ i }}{{ i }}expect(result.status).toBe('success');
{{ i }}});
});
"""

PY_TESTS = '''\
import unittest

from implementation import main


class TestImplementation(unittest.TestCase):
    def test_main_execution(self):
        result = main()
        self.assertEqual(result["status"], "success")


if __name__ == "__main__":
    unittest.main()
'''

JAVA_TESTS = """\
import org.junit.jupiter.api.Test;
import static org.junit.jupiter.api.Assertions.*;

public class {{ class_name }}Test {
{{ i }}@Test
{{ i }}void testExecution() {
{{ i }}{{ i }}{{ class_name }}.Result result = new {{ class_name }}().execute();
{{ i }}{{ i }}assertEquals("success", result.getStatus());
{{ i }}}
}
"""

DOCUMENTATION = """\
# {{ description }}

## Requirements
{% if requirements %}
{% for req in requirements %}
- {{ req }}
{% endfor %}
{% else %}
No specific requirements
{% endif %}

## Language
{{ language }}{% if framework %} ({{ framework }}){% endif %}


## Style
{{ style | default('Default', true) }}

## Usage
```{{ language }}
{{ usage }}
```

## Notes
- Review and test generated code before production use.
"""
