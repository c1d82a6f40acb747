"""In-page scripts.

Each constant is the source of a JavaScript function. Page-level snippets are
invoked as ``(fn)(...jsonArgs)`` through Runtime.evaluate; element-level
snippets (suffix ``_ON_ELEMENT``) are passed to Runtime.callFunctionOn and read
the element from ``this``. All results are returned by value, so every shape
documented here is plain JSON.
"""

from __future__ import annotations

import json

# (selector: str) -> Element | null   (evaluated as a handle, not by value)
# Selectors starting with "/" or "(" are XPath; invalid selectors yield null.
QUERY_SELECTOR = """(sel) => {
  try {
    if (sel.startsWith('/') || sel.startsWith('(')) {
      return document.evaluate(sel, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
    }
    return document.querySelector(sel);
  } catch (e) {
    return null;
  }
}"""


def query_selector_expression(selector: str) -> str:
    return f"({QUERY_SELECTOR})({json.dumps(selector)})"


# () -> {htmlLength, textLength, scripts, svgs, tables, codeBlocks}
PAGE_SIZE_INFO = """() => ({
  htmlLength: document.documentElement.outerHTML.length,
  textLength: (document.body && document.body.innerText ? document.body.innerText.length : 0),
  scripts: document.querySelectorAll('script').length,
  svgs: document.querySelectorAll('svg').length,
  tables: document.querySelectorAll('table').length,
  codeBlocks: document.querySelectorAll('pre, code').length
})"""

# () -> {html: str, text: str}
FULL_CONTENT = """() => ({
  html: document.documentElement.outerHTML,
  text: document.body ? (document.body.innerText || '') : ''
})"""

# () -> str
BODY_TEXT = """() => (document.body ? (document.body.innerText || document.body.textContent || '') : '')"""

# (mainSelectors: str[], excludeSelectors: str[], type: 'html'|'text') -> str
# Picks the first main-content selector with >200 chars of text, else the largest
# non-chrome div/section/article with >500 chars, else <body>; strips excluded nodes.
MAIN_CONTENT = """(selectors, excludes, type) => {
  const findMain = () => {
    for (const sel of selectors) {
      const el = document.querySelector(sel);
      if (el && el.textContent && el.textContent.trim().length > 200) return el;
    }
    let best = null;
    let bestLen = 0;
    for (const el of document.querySelectorAll('div, section, article')) {
      const cls = (typeof el.className === 'string' ? el.className : '').toLowerCase();
      const id = (el.id || '').toLowerCase();
      if (cls.includes('nav') || cls.includes('header') || cls.includes('footer') || cls.includes('sidebar') ||
          id.includes('nav') || id.includes('header') || id.includes('footer')) continue;
      const len = (el.textContent || '').trim().length;
      if (len > bestLen && len > 500) { bestLen = len; best = el; }
    }
    return best || document.body;
  };
  const main = findMain();
  if (!main) {
    return type === 'text' ? (document.body ? document.body.innerText : '') : document.documentElement.outerHTML;
  }
  const clone = main.cloneNode(true);
  for (const sel of excludes) {
    clone.querySelectorAll(sel).forEach((el) => el.remove());
  }
  return type === 'text' ? (clone.textContent || '') : clone.outerHTML;
}"""

# (type: 'html'|'text') -> str
# Title/first h1, up to 10 headings, up to 5 paragraphs longer than 50 chars, meta description.
SUMMARY_CONTENT = """(type) => {
  const parts = [];
  const title = document.querySelector('title, h1');
  if (title) parts.push(title);
  parts.push(...Array.from(document.querySelectorAll('h1, h2, h3')).slice(0, 10));
  parts.push(...Array.from(document.querySelectorAll('p'))
    .filter((p) => ((p.textContent || '').trim().length > 50))
    .slice(0, 5));
  const meta = document.querySelector('meta[name="description"]');
  if (meta && meta.getAttribute('content')) {
    const p = document.createElement('p');
    p.textContent = 'Meta Description: ' + meta.getAttribute('content');
    parts.push(p);
  }
  if (type === 'text') {
    return parts.map((el) => (el.textContent || '').trim()).filter(Boolean).join('\\n\\n');
  }
  return parts.map((el) => el.outerHTML).join('\\n');
}"""

# () -> {html: str, text: str}
# Title, first h1, first paragraph longer than 100 chars, 10 interactive elements, 5 form fields.
EMERGENCY_CONTENT = """() => {
  const parts = [];
  const title = document.querySelector('title');
  if (title) parts.push(title);
  const h1 = document.querySelector('h1');
  if (h1) parts.push(h1);
  const para = Array.from(document.querySelectorAll('p')).find((p) => ((p.textContent || '').trim().length > 100));
  if (para) parts.push(para);
  parts.push(...Array.from(document.querySelectorAll('a, button, input[type="submit"], input[type="button"]'))
    .filter((el) => (el.textContent || '').trim())
    .slice(0, 10));
  parts.push(...Array.from(document.querySelectorAll(
    'input[type="text"], input[type="email"], input[type="password"], textarea')).slice(0, 5));
  const html = parts.map((el) => el.outerHTML).join('\\n');
  const lines = parts.map((el) => {
    const text = (el.textContent || '').trim();
    const tag = el.tagName.toLowerCase();
    const kind = el.getAttribute('type');
    const href = el.getAttribute('href');
    if (tag === 'a' && href) return 'Link: ' + text + ' (' + href + ')';
    if (tag === 'input' || tag === 'button') {
      const label = kind ? kind.charAt(0).toUpperCase() + kind.slice(1) : 'Input';
      return label + ': ' + (text || el.getAttribute('placeholder') || el.getAttribute('value') || '[Element]');
    }
    return text;
  }).filter(Boolean);
  return {
    html: '<!-- Emergency content extraction for large page -->\\n' + html,
    text: 'Emergency Content Summary:\\nPage: ' + (document.title || 'Unknown') + '\\n\\n' + lines.join('\\n\\n')
  };
}"""

# this=Element, (sampleSize: int) -> {html, text, htmlLength, textLength}
ELEMENT_SAMPLE_ON_ELEMENT = """function (size) {
  const html = this.outerHTML || '';
  const text = this.textContent || '';
  return {html: html.substring(0, size), text: text.substring(0, size), htmlLength: html.length, textLength: text.length};
}"""

# this=Element, (type: 'html'|'text') -> str
ELEMENT_CONTENT_ON_ELEMENT = """function (type) {
  if (type === 'text') return this.innerText || this.textContent || '';
  return this.outerHTML || '';
}"""

# this=Element, () -> str   (lower-cased text/value/placeholder used to verify a located element)
ELEMENT_MATCH_TEXT_ON_ELEMENT = """function () {
  return String(this.textContent || this.value || this.placeholder || '').toLowerCase();
}"""

# this=Element, () -> bool   (scrolls into view and clicks through the DOM)
CLICK_ON_ELEMENT = """function () {
  this.scrollIntoView({block: 'center', inline: 'center'});
  if (typeof this.click === 'function') { this.click(); return true; }
  this.dispatchEvent(new MouseEvent('click', {bubbles: true, cancelable: true, view: window}));
  return true;
}"""

# this=Element, () -> bool
SCROLL_INTO_VIEW_ON_ELEMENT = """function () {
  this.scrollIntoView({block: 'center', inline: 'center'});
  return true;
}"""

# this=Element, () -> bool   (focus and clear the current value)
FOCUS_AND_CLEAR_ON_ELEMENT = """function () {
  this.focus();
  if ('value' in this) {
    this.value = '';
    this.dispatchEvent(new Event('input', {bubbles: true}));
  } else if (this.isContentEditable) {
    this.textContent = '';
  }
  return document.activeElement === this;
}"""

# this=Element, (text: str) -> bool   (fallback when keyboard insertion is not possible)
SET_VALUE_ON_ELEMENT = """function (text) {
  if ('value' in this) {
    this.value = text;
  } else if (this.isContentEditable) {
    this.textContent = text;
  } else {
    return false;
  }
  this.dispatchEvent(new Event('input', {bubbles: true}));
  this.dispatchEvent(new Event('change', {bubbles: true}));
  return true;
}"""

# (selector: str, expectedText: str|null, attrs: str[]) -> ElementInfo-shaped object | null
# {tagName, id, className, name, placeholder, ariaLabel, ariaRole, dataTestId, textContent,
#  value, type, href, src, title, alt, attributes: {attr: value}, position: {parentSelector,
#  childIndex, siblingIndex}}. Only the first of up to 5 text-matching candidates is described.
ANALYZE_FAILED_SELECTOR = """(sel, text, attrs) => {
  if (!text) return null;
  const needle = text.toLowerCase();
  const matches = (el) => {
    const content = (el.textContent || '').toLowerCase();
    const value = String(el.value || '').toLowerCase();
    const placeholder = String(el.placeholder || '').toLowerCase();
    const aria = (el.getAttribute('aria-label') || '').toLowerCase();
    return content.includes(needle) || value.includes(needle) || placeholder.includes(needle) || aria.includes(needle);
  };
  // Innermost matches only: every ancestor of a match contains the same text.
  const candidates = [];
  for (const el of document.querySelectorAll('body *')) {
    if (matches(el) && !Array.from(el.children).some(matches)) {
      candidates.push(el);
      if (candidates.length >= 5) break;
    }
  }
  const el = candidates[0];
  if (!el) return null;
  const attributes = {};
  for (const name of attrs) {
    const v = el.getAttribute(name);
    if (v) attributes[name] = v;
  }
  let position = null;
  const parent = el.parentElement;
  if (parent) {
    let parentSelector = parent.tagName.toLowerCase();
    if (parent.id && /^[a-zA-Z][\\w-]*$/.test(parent.id)) parentSelector = '#' + parent.id;
    const siblings = Array.from(parent.children);
    position = {
      parentSelector,
      childIndex: siblings.indexOf(el),
      siblingIndex: siblings.filter((s) => s.tagName === el.tagName).indexOf(el)
    };
  }
  return {
    tagName: el.tagName.toLowerCase(),
    id: el.id || null,
    className: (typeof el.className === 'string' ? el.className : '') || null,
    name: el.getAttribute('name') || null,
    placeholder: el.getAttribute('placeholder') || null,
    ariaLabel: el.getAttribute('aria-label') || null,
    ariaRole: el.getAttribute('role') || null,
    dataTestId: el.getAttribute('data-testid') || el.getAttribute('data-test-id') || null,
    textContent: (el.textContent || '').trim().slice(0, 50) || null,
    value: (typeof el.value === 'string' && el.value) ? el.value : null,
    type: el.getAttribute('type') || null,
    href: el.getAttribute('href') || null,
    src: el.getAttribute('src') || null,
    title: el.getAttribute('title') || null,
    alt: el.getAttribute('alt') || null,
    attributes,
    position
  };
}"""

# (text: str) -> [{tagName, id, className, textContent}]   (at most 5)
FIND_BY_TEXT = """(text) => {
  const needle = text.toLowerCase();
  const out = [];
  for (const el of document.querySelectorAll('body *')) {
    const content = (el.textContent || '').toLowerCase();
    const value = String(el.value || '').toLowerCase();
    const placeholder = String(el.placeholder || '').toLowerCase();
    if (content.includes(needle) || value.includes(needle) || placeholder.includes(needle)) {
      out.push({
        tagName: el.tagName.toLowerCase(),
        id: el.id || null,
        className: (typeof el.className === 'string' ? el.className : '') || null,
        textContent: (el.textContent || '').trim().slice(0, 30)
      });
      if (out.length >= 5) break;
    }
  }
  return out;
}"""

# (text: str, selectors: str[], exact: bool) -> [{selector, text, tagName, confidence, rect}]
# sorted by confidence descending.
FIND_SELECTOR_CANDIDATES = """(searchText, selectors, exact) => {
  const authPatterns = [
    /^(log\\s*in|sign\\s*in|log\\s*on|sign\\s*on)$/i,
    /^(login|signin|authenticate|enter)$/i,
    /continue with (google|github|facebook|twitter|microsoft)/i,
    /sign in with/i
  ];
  const utilityPatterns = [
    /^(m|p|mt|mb|ml|mr|pt|pb|pl|pr|mx|my|px|py)-?\\d+$/,
    /^(text|bg|border)-(primary|secondary|danger|warning|info|success|light|dark|white|black)$/,
    /^(d|display)-(none|block|inline|flex|grid)$/,
    /^(w|h)-\\d+$/,
    /^(btn|button)-(sm|md|lg|xl)$/
  ];
  const meaningfulPatterns = [
    /^(nav|menu|header|footer|sidebar|content|main|article)/,
    /^(form|input|button|link|modal|dialog)/,
    /^(auth|login|signin|signup|register)/,
    /^(search|filter|sort|toggle)/,
    /(container|wrapper|section|panel|card)$/
  ];
  const isUtility = (c) => utilityPatterns.some((p) => p.test(c));
  const isMeaningful = (c) => meaningfulPatterns.some((p) => p.test(c.toLowerCase()));
  const isAuthSearch = authPatterns.some((p) => p.test(searchText));
  const lowerSearch = searchText.toLowerCase();
  const escapeRe = (s) => s.replace(/[.*+?^${}()|[\\]\\\\]/g, '\\\\$&');
  const xpathLiteral = (s) => {
    if (!s.includes("'")) return "'" + s + "'";
    if (!s.includes('"')) return '"' + s + '"';
    return "concat('" + s.split("'").join("', \\"'\\", '") + "')";
  };

  const simpleSelector = (el) => {
    const tag = el.tagName.toLowerCase();
    if (el.id && /^[a-zA-Z][\\w-]*$/.test(el.id)) return '#' + CSS.escape(el.id);
    const data = Array.from(el.attributes).find((a) => a.name.startsWith('data-') && a.value);
    if (data) return tag + '[' + data.name + '="' + data.value.replace(/"/g, '\\\\"') + '"]';
    if (typeof el.className === 'string' && el.className.trim()) {
      const classes = el.className.trim().split(/\\s+/)
        .filter((c) => c && (isMeaningful(c) || !isUtility(c)))
        .slice(0, 2);
      if (classes.length) return tag + '.' + classes.map((c) => CSS.escape(c)).join('.');
    }
    const text = (el.textContent || '').trim();
    if (text && text.length <= 30) return '//' + tag + '[normalize-space()=' + xpathLiteral(text) + ']';
    return tag;
  };

  const score = (el) => {
    let s = 0;
    const lower = (el.textContent || '').trim().toLowerCase();
    if (lower === lowerSearch) s += 100;
    else if (lower.includes(lowerSearch)) s += 50;
    if (new RegExp('\\\\b' + escapeRe(lowerSearch) + '\\\\b').test(lower)) s += 25;
    if (['button', 'a', 'input'].includes(el.tagName.toLowerCase())) s += 20;
    if (el.getAttribute('role')) s += 10;
    if (el.id) s += 15;
    if (el.getAttribute('onclick') || el.getAttribute('href')) s += 10;
    if (typeof el.className === 'string') s -= el.className.split(/\\s+/).filter(isUtility).length * 5;
    return s;
  };

  const seen = new Set();
  const results = [];
  for (const base of selectors) {
    let nodes = [];
    try { nodes = document.querySelectorAll(base); } catch (e) { continue; }
    nodes.forEach((el) => {
      if (seen.has(el)) return;
      const text = (el.textContent || '').trim();
      const aria = el.getAttribute('aria-label') || '';
      const title = el.getAttribute('title') || '';
      const placeholder = el.getAttribute('placeholder') || '';
      let matches = exact
        ? (text.toLowerCase() === lowerSearch || aria.toLowerCase() === lowerSearch)
        : [text, aria, title, placeholder].join(' ').toLowerCase().includes(lowerSearch);
      if (!matches && isAuthSearch) {
        const href = el.href || '';
        matches = ['login', 'signin', 'auth', 'oauth'].some((k) => String(href).includes(k));
      }
      if (!matches) return;
      seen.add(el);
      const r = el.getBoundingClientRect();
      results.push({
        selector: simpleSelector(el),
        text: text.slice(0, 200),
        tagName: el.tagName.toLowerCase(),
        confidence: score(el),
        rect: {x: r.x, y: r.y, width: r.width, height: r.height}
      });
    });
  }
  return results.sort((a, b) => b.confidence - a.confidence);
}"""
