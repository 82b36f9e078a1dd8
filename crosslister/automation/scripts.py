# In-page scripts evaluated through Playwright.

# Resolves with the element, or null once `timeoutMs` elapses. Uses a
# MutationObserver rather than interval polling: timers in throttled
# background surfaces are slowed, mutation callbacks are not.
WAIT_FOR_ELEMENT = """
([selector, timeoutMs]) => new Promise((resolve) => {
  const existing = document.querySelector(selector);
  if (existing) {
    resolve(existing);
    return;
  }
  let timer = null;
  const observer = new MutationObserver(() => {
    const el = document.querySelector(selector);
    if (el) {
      clearTimeout(timer);
      observer.disconnect();
      resolve(el);
    }
  });
  observer.observe(document.documentElement || document, {
    childList: true,
    subtree: true,
    attributes: true,
  });
  timer = setTimeout(() => {
    observer.disconnect();
    resolve(null);
  }, timeoutMs);
})
"""

# Sets the value through the native setter so framework-controlled inputs
# (React, Vue) observe the change, then fires one input + change pair.
SET_VALUE = """
(el, value) => {
  const proto = el instanceof HTMLTextAreaElement
    ? HTMLTextAreaElement.prototype
    : HTMLInputElement.prototype;
  const setter = Object.getOwnPropertyDescriptor(proto, 'value').set;
  setter.call(el, value);
  el.dispatchEvent(new Event('input', { bubbles: true }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
}
"""

CLEAR_VALUE = """
(el) => {
  const proto = el instanceof HTMLTextAreaElement
    ? HTMLTextAreaElement.prototype
    : HTMLInputElement.prototype;
  Object.getOwnPropertyDescriptor(proto, 'value').set.call(el, '');
}
"""

READ_VALUE = "(el) => ('value' in el ? el.value : el.textContent) || ''"

# Builds a File from base64 bytes, assigns it through a DataTransfer and lets
# the page's own upload handler pick it up.
INJECT_FILE = """
(input, [b64, name, mimeType]) => {
  const bin = atob(b64);
  const bytes = new Uint8Array(bin.length);
  for (let i = 0; i < bin.length; i++) bytes[i] = bin.charCodeAt(i);
  const file = new File([bytes], name, { type: mimeType });
  const dt = new DataTransfer();
  dt.items.add(file);
  input.files = dt.files;
  input.dispatchEvent(new Event('input', { bubbles: true }));
  input.dispatchEvent(new Event('change', { bubbles: true }));
  return input.files.length;
}
"""
