import uvicorn

if __name__ == "__main__":
    uvicorn.run("support_bot.main:app", host="0.0.0.0", port=8000)
